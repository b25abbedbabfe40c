from __future__ import annotations

import json
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Protocol

from ..logging import get_logger
from ..util.errors import SourceEnumerationError
from ..util.powershell import PowerShellRunner, make_runner, quote

if TYPE_CHECKING:
    from ..config import RunConfig

LOG = get_logger(__name__)


class HostSource(Protocol):
    description: str

    def hosts(self) -> List[str]:
        ...


def normalize_hosts(raw: Iterable[str]) -> List[str]:
    """
    Strip entries, drop blanks and drop case-insensitive duplicates while
    keeping the first spelling and the input order.
    """
    seen: set[str] = set()
    out: List[str] = []
    for entry in raw:
        name = str(entry).strip()
        if not name:
            continue
        key = name.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(name)
    return out


class StaticHostSource:
    def __init__(self, hosts: Iterable[str]) -> None:
        self._hosts = normalize_hosts(hosts)
        self.description = f"explicit list ({len(self._hosts)} hosts)"

    def hosts(self) -> List[str]:
        return list(self._hosts)


class HostFileSource:
    """One host per line; blank lines and '#' comments are ignored."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self.description = f"host file {self._path}"

    def hosts(self) -> List[str]:
        try:
            text = self._path.read_text(encoding="utf-8-sig")
        except OSError as e:
            raise SourceEnumerationError(f"Cannot read host file {self._path}: {e}") from e
        lines = (line.split("#", 1)[0] for line in text.splitlines())
        return normalize_hosts(lines)


class ActiveDirectoryHostSource:
    """
    Enumerate computer objects with Get-ADComputer (RSAT ActiveDirectory module).

    `ldap_filter` takes precedence over `filter`. With `inactive_days` > 0 only
    computers whose LastLogonDate falls inside that window are kept; computers
    that never logged on are treated as stale.
    """

    def __init__(
        self,
        *,
        search_base: Optional[str] = None,
        filter: str = "*",
        ldap_filter: Optional[str] = None,
        inactive_days: int = 0,
        server: Optional[str] = None,
        timeout: float = 120.0,
        runner: Optional[PowerShellRunner] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._search_base = search_base
        self._filter = filter or "*"
        self._ldap_filter = ldap_filter
        self._inactive_days = max(0, int(inactive_days))
        self._server = server
        self._timeout = timeout
        self._runner = runner or make_runner()
        self._now = now
        scope = search_base or "domain root"
        self.description = f"Active Directory ({scope})"

    def script(self) -> str:
        parts = ["Import-Module ActiveDirectory -ErrorAction Stop;", "Get-ADComputer"]
        if self._ldap_filter:
            parts.append(f"-LDAPFilter {quote(self._ldap_filter)}")
        else:
            parts.append(f"-Filter {quote(self._filter)}")
        if self._search_base:
            parts.append(f"-SearchBase {quote(self._search_base)}")
        if self._server:
            parts.append(f"-Server {quote(self._server)}")
        parts.append("-Properties DNSHostName,LastLogonDate -ErrorAction Stop")
        parts.append(
            "| Select-Object Name,DNSHostName,"
            "@{n='LastLogonDate';e={if ($_.LastLogonDate) { $_.LastLogonDate.ToUniversalTime().ToString('s') }}}"
        )
        parts.append("| ConvertTo-Json -Compress")
        return " ".join(parts)

    def _run(self) -> str:
        try:
            proc = self._runner(self.script(), self._timeout)
        except FileNotFoundError as e:
            raise SourceEnumerationError(f"PowerShell is not available: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise SourceEnumerationError(f"Get-ADComputer timed out after {self._timeout:g}s") from e
        if proc.returncode != 0:
            detail = (proc.stderr or "").strip() or f"exit status {proc.returncode}"
            raise SourceEnumerationError(f"Get-ADComputer failed: {detail}")
        return proc.stdout or ""

    def _is_recent(self, computer: Dict[str, Any], cutoff: datetime) -> bool:
        raw = computer.get("LastLogonDate")
        if not raw:
            return False
        try:
            logon = datetime.fromisoformat(str(raw))
        except ValueError:
            LOG.warning("Ignoring unparsable LastLogonDate", extra={"host": computer.get("Name"), "error": str(raw)})
            return False
        if logon.tzinfo is None:
            logon = logon.replace(tzinfo=timezone.utc)
        return logon >= cutoff

    def hosts(self) -> List[str]:
        text = self._run().lstrip("\ufeff").strip()
        if not text:
            raise SourceEnumerationError(f"No computers found in {self.description}")
        try:
            data = json.loads(text)
        except ValueError as e:
            raise SourceEnumerationError(f"Unparsable Get-ADComputer output: {e}") from e
        computers = [data] if isinstance(data, dict) else data
        if not isinstance(computers, list):
            raise SourceEnumerationError("Unexpected Get-ADComputer output")

        if self._inactive_days:
            cutoff = self._now() - timedelta(days=self._inactive_days)
            before = len(computers)
            computers = [c for c in computers if isinstance(c, dict) and self._is_recent(c, cutoff)]
            LOG.info(
                "Dropped %d computer(s) without a logon in the last %d days",
                before - len(computers),
                self._inactive_days,
                extra={"step": "directory"},
            )

        names = [str(c.get("DNSHostName") or c.get("Name") or "") for c in computers if isinstance(c, dict)]
        hosts = sorted(normalize_hosts(names), key=str.lower)
        if not hosts:
            raise SourceEnumerationError(f"No computers matched in {self.description}")
        return hosts


def resolve_host_source(cfg: RunConfig) -> HostSource:
    """
    Explicit hosts win over a host file; without either, query Active Directory.
    """
    if cfg.hosts:
        return StaticHostSource(cfg.hosts)
    if cfg.hosts_file:
        return HostFileSource(cfg.hosts_file)
    return ActiveDirectoryHostSource(
        search_base=cfg.search_base,
        filter=cfg.filter,
        ldap_filter=cfg.ldap_filter,
        inactive_days=cfg.inactive_days,
        server=cfg.ad_server,
        timeout=cfg.ps_timeout,
        runner=make_runner(cfg.powershell_exe),
    )
