"""Helpers for reporting external process output."""


def tail_output(output: str | bytes | None, max_lines: int = 20) -> str:
    """Return the last lines of a process' output for error messages."""
    if not output:
        return ""
    if isinstance(output, bytes):
        output = output.decode("utf-8", errors="replace")
    lines = [line for line in output.replace("\r", "\n").splitlines() if line.strip()]
    return "\n".join(lines[-max_lines:])
