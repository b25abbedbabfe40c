from __future__ import annotations

import re
import subprocess
from typing import Callable, List

DEFAULT_POWERSHELL = "powershell"

PowerShellRunner = Callable[[str, float], "subprocess.CompletedProcess[str]"]

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_HOST_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]*$")


def powershell_command(script: str, executable: str = DEFAULT_POWERSHELL) -> List[str]:
    return [executable, "-NoProfile", "-NonInteractive", "-Command", script]


def make_runner(executable: str = DEFAULT_POWERSHELL) -> PowerShellRunner:
    """
    Return a callable running a PowerShell script locally and capturing text output.
    Raises FileNotFoundError when the executable is missing and
    subprocess.TimeoutExpired when the script outlives `timeout` seconds.
    """

    def _run(script: str, timeout: float) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            powershell_command(script, executable),
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            check=False,
        )

    return _run


def quote(value: str) -> str:
    """Single-quote a value for PowerShell (embedded quotes are doubled)."""
    return "'" + value.replace("'", "''") + "'"


def is_identifier(value: str) -> bool:
    return bool(_IDENTIFIER_RE.match(value))


def is_hostname(value: str) -> bool:
    return bool(_HOST_RE.match(value))
