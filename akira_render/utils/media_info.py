"""Media file information utilities using FFprobe."""

import json
import subprocess

from akira_render.config import get_settings


def _run_ffprobe(file_path: str, *args: str, timeout: float | None = None) -> dict:
    """Run ffprobe and return parsed JSON.

    Raises:
        RuntimeError: If ffprobe fails, times out, or prints invalid JSON
    """
    settings = get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "error",
        "-print_format", "json",
        *args,
        file_path,
    ]

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout or settings.probe_timeout_s,
        )
    except subprocess.TimeoutExpired as e:
        raise RuntimeError(f"ffprobe timed out after {e.timeout}s: {file_path}") from e
    except FileNotFoundError as e:
        raise RuntimeError(f"ffprobe not found: {settings.ffprobe_path}") from e

    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}")


def get_media_duration(file_path: str) -> float:
    """
    Get media file duration in seconds.

    Raises:
        RuntimeError: If ffprobe fails or duration not found
    """
    data = _run_ffprobe(file_path, "-show_format")
    format_info = data.get("format", {})

    if "duration" not in format_info:
        raise RuntimeError(f"Duration not found in: {file_path}")

    return float(format_info["duration"])


def get_video_dimensions(file_path: str) -> tuple[int, int]:
    """
    Get video width and height of the first video stream.

    Raises:
        RuntimeError: If ffprobe fails or video stream not found
    """
    data = _run_ffprobe(
        file_path,
        "-select_streams", "v:0",
        "-show_entries", "stream=width,height",
    )

    streams = data.get("streams", [])
    if not streams:
        raise RuntimeError(f"No video stream found in: {file_path}")

    stream = streams[0]
    width = stream.get("width")
    height = stream.get("height")

    if not width or not height:
        raise RuntimeError(f"Video dimensions not found in: {file_path}")

    return width, height


def has_audio_track(file_path: str) -> bool:
    """Check if media file has an audio track. Probe failures count as no audio."""
    try:
        data = _run_ffprobe(file_path, "-show_streams", "-select_streams", "a")
        return len(data.get("streams", [])) > 0
    except RuntimeError:
        return False
