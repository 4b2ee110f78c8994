"""One-time Remotion bundling shared by every clip of a render job.

Bundling compiles the Remotion entry point into a static site that the
renderer serves frames from. It is by far the most expensive setup step, so the
result is cached on disk keyed by the entry point and the modification times
of its source tree, and memoised per process.
"""

import hashlib
import logging
import shutil
import subprocess
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from akira_render.config import Settings, get_settings
from akira_render.exceptions import BundlePrepareError
from akira_render.utils.process import tail_output

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BundleHandle:
    """Opaque handle to a prepared bundle, passed to every clip render."""

    serve_url: str
    entry_point: str
    cache_key: str


class BundleCache:
    """Prepare the Remotion bundle once and reuse it."""

    _lock = threading.Lock()
    _prepared: dict[str, BundleHandle] = {}

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.project_dir = Path(self.settings.remotion_project_dir)
        self.entry_point = self.project_dir / self.settings.remotion_entry_point
        self.cache_root = Path(self.settings.remotion_bundle_cache_dir)

    def cache_key(self) -> str:
        """Hash of the entry point path and the mtimes of its source tree."""
        if not self.entry_point.is_file():
            raise BundlePrepareError(f"Remotion entry point not found: {self.entry_point}")

        digest = hashlib.sha256(str(self.entry_point.resolve()).encode())
        source_root = self.entry_point.parent
        for path in sorted(source_root.rglob("*")):
            if path.is_file():
                digest.update(f"{path.relative_to(source_root)}:{path.stat().st_mtime_ns}".encode())
        return digest.hexdigest()[:16]

    def prepare(self) -> BundleHandle:
        """Return a ready bundle, building it if no cached copy exists.

        Raises:
            BundlePrepareError: If the bundle cannot be built
        """
        key = self.cache_key()
        bundle_dir = self.cache_root / key

        with self._lock:
            handle = self._prepared.get(key)
            if handle is not None and _is_bundle(Path(handle.serve_url)):
                logger.info(f"[BUNDLE] Reusing in-process bundle {key}")
                return handle

            if _is_bundle(bundle_dir):
                logger.info(f"[BUNDLE] Reusing cached bundle at {bundle_dir}")
            else:
                self._build(bundle_dir)

            handle = BundleHandle(
                serve_url=str(bundle_dir),
                entry_point=str(self.entry_point),
                cache_key=key,
            )
            self._prepared[key] = handle
            return handle

    def build_command(self, out_dir: Path) -> list[str]:
        return [
            self.settings.remotion_npx_path,
            "remotion", "bundle",
            str(self.entry_point),
            f"--out-dir={out_dir}",
        ]

    def _build(self, bundle_dir: Path) -> None:
        self.cache_root.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f"{bundle_dir.name}.", dir=self.cache_root))
        cmd = self.build_command(staging)
        timeout = self.settings.bundle_timeout_s

        logger.info(f"[BUNDLE] Bundling entry point: {self.entry_point}")
        try:
            result = subprocess.run(
                cmd,
                cwd=self.project_dir,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise BundlePrepareError(f"Remotion bundling timed out after {timeout}s") from e
        except FileNotFoundError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise BundlePrepareError(f"Remotion CLI not found: {cmd[0]}") from e

        if result.returncode != 0:
            shutil.rmtree(staging, ignore_errors=True)
            detail = tail_output(result.stderr or result.stdout, max_lines=10)
            raise BundlePrepareError(f"Remotion bundling failed (exit {result.returncode}): {detail}")

        if not _is_bundle(staging):
            shutil.rmtree(staging, ignore_errors=True)
            raise BundlePrepareError("Remotion bundling produced no index.html")

        try:
            staging.replace(bundle_dir)
        except OSError:
            # Another worker finished the same bundle first
            shutil.rmtree(staging, ignore_errors=True)
            if not _is_bundle(bundle_dir):
                raise BundlePrepareError(f"Could not store bundle at {bundle_dir}")

        logger.info(f"[BUNDLE] Bundle ready at: {bundle_dir}")


def _is_bundle(path: Path) -> bool:
    return (path / "index.html").is_file()
