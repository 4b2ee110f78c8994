"""Tests for one-time Remotion bundling."""

import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from akira_render.config import Settings
from akira_render.exceptions import BundlePrepareError
from akira_render.render.bundle_cache import BundleCache


@pytest.fixture
def entry_point(settings) -> Path:
    entry = Path(settings.remotion_project_dir) / settings.remotion_entry_point
    entry.parent.mkdir(parents=True)
    entry.write_text("registerRoot(Root);")
    (entry.parent / "Root.tsx").write_text("export const Root = () => null;")
    return entry


@pytest.fixture(autouse=True)
def clear_memo():
    BundleCache._prepared.clear()
    yield
    BundleCache._prepared.clear()


def _fake_bundle(cmd, **kwargs):
    """Simulate `remotion bundle` writing a static site to --out-dir."""
    out_dir = Path(next(arg for arg in cmd if arg.startswith("--out-dir=")).split("=", 1)[1])
    (out_dir / "index.html").write_text("<html></html>")
    return MagicMock(returncode=0, stdout="", stderr="")


class TestBundleCache:
    """Tests for BundleCache.prepare."""

    def test_bundles_once(self, settings, entry_point):
        with patch("akira_render.render.bundle_cache.subprocess.run", side_effect=_fake_bundle) as mock_run:
            first = BundleCache(settings).prepare()
            second = BundleCache(settings).prepare()

        assert mock_run.call_count == 1
        assert first == second
        assert (Path(first.serve_url) / "index.html").is_file()

    def test_reuses_bundle_on_disk(self, settings, entry_point):
        with patch("akira_render.render.bundle_cache.subprocess.run", side_effect=_fake_bundle) as mock_run:
            first = BundleCache(settings).prepare()
            BundleCache._prepared.clear()
            second = BundleCache(settings).prepare()

        assert mock_run.call_count == 1
        assert second.serve_url == first.serve_url

    def test_source_change_rebuilds(self, settings, entry_point):
        with patch("akira_render.render.bundle_cache.subprocess.run", side_effect=_fake_bundle) as mock_run:
            first = BundleCache(settings).prepare()
            root = entry_point.parent / "Root.tsx"
            stat = root.stat()
            os.utime(root, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))
            second = BundleCache(settings).prepare()

        assert mock_run.call_count == 2
        assert first.cache_key != second.cache_key

    def test_command(self, settings, entry_point, tmp_path):
        cmd = BundleCache(settings).build_command(tmp_path / "out")

        assert cmd == ["npx", "remotion", "bundle", str(entry_point), f"--out-dir={tmp_path / 'out'}"]

    def test_missing_entry_point(self, settings):
        with pytest.raises(BundlePrepareError, match="entry point not found"):
            BundleCache(settings).prepare()

    def test_bundler_failure(self, settings, entry_point):
        failed = MagicMock(returncode=1, stdout="", stderr="Module not found: ./Root")
        with patch("akira_render.render.bundle_cache.subprocess.run", return_value=failed):
            with pytest.raises(BundlePrepareError, match="Module not found"):
                BundleCache(settings).prepare()

        # No partial bundle is left behind
        assert list(Path(settings.remotion_bundle_cache_dir).iterdir()) == []

    def test_bundle_without_index(self, settings, entry_point):
        empty = MagicMock(returncode=0, stdout="", stderr="")
        with patch("akira_render.render.bundle_cache.subprocess.run", return_value=empty):
            with pytest.raises(BundlePrepareError, match="index.html"):
                BundleCache(settings).prepare()

    def test_default_entry_point_ships_with_package(self):
        cache = BundleCache(Settings(_env_file=None))

        assert cache.entry_point.is_file()
        root = (cache.entry_point.parent / "Root.tsx").read_text()
        assert 'id="DynamicAnimation"' in root
        assert "calculateMetadata" in root
        assert "props.durationInFrames" in root
