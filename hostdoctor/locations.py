"""Well-known reclaimable locations per platform.

Shared by the disk probe (to size them) and the cleanup remediations (to
empty them).
"""

from __future__ import annotations

import logging
import os
import stat
import sys
import tempfile
import time
from pathlib import Path

from hostdoctor.scan.cancellation import CancellationToken

logger = logging.getLogger(__name__)

BROWSERS = ("Chrome", "Microsoft Edge", "Firefox", "Chromium")

_MB = 1024 * 1024


def _env_path(name: str, fallback: Path) -> Path:
    value = os.environ.get(name)
    return Path(value) if value else fallback


def _windows_dir() -> Path:
    return _env_path("SystemRoot", Path("C:/Windows"))


def temp_paths() -> list[Path]:
    paths = [Path(tempfile.gettempdir())]
    if sys.platform == "win32":
        paths.append(_windows_dir() / "Temp")
    return paths


def trash_paths() -> list[Path]:
    home = Path.home()
    if sys.platform == "darwin":
        return [home / ".Trash"]
    if sys.platform == "win32":
        return []  # Recycle Bin is emptied through the shell, not by path
    data = _env_path("XDG_DATA_HOME", home / ".local" / "share")
    return [data / "Trash" / "files", data / "Trash" / "info"]


def crash_dump_paths() -> list[Path]:
    if sys.platform == "win32":
        win = _windows_dir()
        return [win / "Minidump", win / "MEMORY.DMP"]
    if sys.platform == "darwin":
        return [Path.home() / "Library" / "Logs" / "DiagnosticReports"]
    return [Path("/var/crash")]


def error_report_paths() -> list[Path]:
    if sys.platform != "win32":
        return []
    local = _env_path("LOCALAPPDATA", Path.home() / "AppData" / "Local")
    common = _env_path("PROGRAMDATA", Path("C:/ProgramData"))
    return [
        local / "Microsoft" / "Windows" / "WER" / "ReportArchive",
        local / "Microsoft" / "Windows" / "WER" / "ReportQueue",
        local / "CrashDumps",
        common / "Microsoft" / "Windows" / "WER" / "ReportArchive",
        common / "Microsoft" / "Windows" / "WER" / "ReportQueue",
    ]


def browser_cache_paths(browser: str) -> list[Path]:
    """Cache directories for ``browser`` (matched loosely by name)."""
    home = Path.home()
    name = browser.lower()

    if sys.platform == "win32":
        local = _env_path("LOCALAPPDATA", home / "AppData" / "Local")
        roaming = _env_path("APPDATA", home / "AppData" / "Roaming")
        chromium_roots = {
            "chrome": local / "Google" / "Chrome" / "User Data" / "Default",
            "edge": local / "Microsoft" / "Edge" / "User Data" / "Default",
            "chromium": local / "Chromium" / "User Data" / "Default",
        }
        firefox_profiles = roaming / "Mozilla" / "Firefox" / "Profiles"
    elif sys.platform == "darwin":
        caches = home / "Library" / "Caches"
        chromium_roots = {
            "chrome": caches / "Google" / "Chrome" / "Default",
            "edge": caches / "Microsoft Edge" / "Default",
            "chromium": caches / "Chromium" / "Default",
        }
        firefox_profiles = caches / "Firefox" / "Profiles"
    else:
        cache = _env_path("XDG_CACHE_HOME", home / ".cache")
        chromium_roots = {
            "chrome": cache / "google-chrome" / "Default",
            "edge": cache / "microsoft-edge" / "Default",
            "chromium": cache / "chromium" / "Default",
        }
        firefox_profiles = cache / "mozilla" / "firefox"

    if "firefox" in name:
        if not firefox_profiles.is_dir():
            return []
        return [p / "cache2" for p in sorted(firefox_profiles.iterdir()) if p.is_dir()]

    for marker, root in chromium_roots.items():
        if marker in name:
            return [root / "Cache", root / "Code Cache"]
    return []


# ── Sizing / deletion ────────────────────────────────────────────────────────


def path_size_bytes(path: Path) -> int:
    """Total size of a file or directory tree; unreadable entries count as 0."""
    try:
        if path.is_file():
            return path.stat().st_size
        if not path.is_dir():
            return 0
    except OSError:
        return 0

    total = 0
    for dirpath, _dirnames, filenames in os.walk(path, onerror=lambda _e: None):
        for filename in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, filename)).st_size
            except OSError:
                continue
    return total


def paths_size_mb(paths: list[Path]) -> int:
    return sum(path_size_bytes(p) for p in paths) // _MB


def _owned(st: os.stat_result) -> bool:
    if not hasattr(os, "getuid"):
        return True
    return st.st_uid == os.getuid()


def delete_contents(
    path: Path,
    token: CancellationToken | None = None,
    min_age_seconds: float = 0,
) -> tuple[int, int, int]:
    """Delete everything under ``path`` (or the file itself).

    Returns ``(freed_bytes, deleted, skipped)``. Locked or in-use files are
    skipped. Files younger than ``min_age_seconds``, entries that are not
    regular files and files owned by another user are left alone and not
    counted. Stops early, keeping what it has done, if ``token`` fires.
    """
    freed = deleted = skipped = 0

    if path.is_file():
        try:
            size = path.stat().st_size
            path.unlink()
            return size, 1, 0
        except OSError:
            return 0, 0, 1
    if not path.is_dir():
        return 0, 0, 0

    cutoff = time.time() - min_age_seconds
    for dirpath, dirnames, filenames in os.walk(path, topdown=False, onerror=lambda _e: None):
        for filename in filenames:
            if token is not None and token.cancelled:
                return freed, deleted, skipped
            full = os.path.join(dirpath, filename)
            try:
                st = os.lstat(full)
                if not stat.S_ISREG(st.st_mode) or not _owned(st):
                    continue
                if min_age_seconds and st.st_mtime > cutoff:
                    continue
                os.unlink(full)
                freed += st.st_size
                deleted += 1
            except OSError:
                skipped += 1
        for dirname in dirnames:
            try:
                os.rmdir(os.path.join(dirpath, dirname))
            except OSError:
                pass  # not empty: something inside was skipped or too new
    return freed, deleted, skipped
