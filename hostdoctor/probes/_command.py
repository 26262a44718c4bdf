"""Run platform tools for probes and remediations (no shell, bounded)."""

from __future__ import annotations

import json
import logging
import subprocess
import sys
import time
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"


@dataclass
class CommandResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def run_command(cmd: list[str], timeout_sec: float = 30) -> CommandResult:
    """Run ``cmd`` and return a structured result; never raises for tool errors."""
    t0 = time.perf_counter()
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout_sec,
            encoding="utf-8",
            errors="replace",
        )
        return CommandResult(
            exit_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            duration_ms=int((time.perf_counter() - t0) * 1000),
        )
    except subprocess.TimeoutExpired:
        logger.warning("Command timed out after %ss: %s", timeout_sec, cmd[0])
        return CommandResult(
            exit_code=-1,
            stderr=f"Command timed out after {timeout_sec}s",
            duration_ms=int((time.perf_counter() - t0) * 1000),
        )
    except FileNotFoundError as e:
        return CommandResult(
            exit_code=-1,
            stderr=f"Command not found: {e}",
            duration_ms=int((time.perf_counter() - t0) * 1000),
        )


def powershell(script: str, timeout_sec: float = 30) -> CommandResult:
    """Run a PowerShell snippet (Windows only)."""
    return run_command(
        ["powershell", "-NoProfile", "-NonInteractive", "-Command", script],
        timeout_sec=timeout_sec,
    )


def powershell_json(script: str, timeout_sec: float = 30) -> list[dict[str, Any]]:
    """Run ``script | ConvertTo-Json`` and always return a list of objects.

    ConvertTo-Json emits a bare object for a single row; empty or failed
    output yields ``[]``.
    """
    res = powershell(f"{script} | ConvertTo-Json -Compress -Depth 3", timeout_sec=timeout_sec)
    if not res.ok or not res.stdout.strip():
        if not res.ok:
            logger.debug("PowerShell query failed (%s): %s", res.exit_code, res.stderr.strip()[:200])
        return []
    try:
        data = json.loads(res.stdout)
    except json.JSONDecodeError:
        logger.debug("PowerShell returned non-JSON output")
        return []
    if isinstance(data, dict):
        return [data]
    return [row for row in data if isinstance(row, dict)] if isinstance(data, list) else []
