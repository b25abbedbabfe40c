from __future__ import annotations

import json
import subprocess
from typing import Any, Callable, List, Optional, Protocol, Sequence, runtime_checkable

import winrm

from ..normalize.schema import CLASS_PROPERTIES, RemoteInstance
from ..util.errors import ConfigError, QueryError
from ..util.powershell import PowerShellRunner, is_hostname, is_identifier, make_runner, quote

PROTOCOL_NAMES = ("wsman", "dcom")


@runtime_checkable
class QueryProtocol(Protocol):
    """
    One way of invoking a remote management class query.
    Implementations raise QueryError for any failure and never return None.
    """

    name: str

    def query(self, class_name: str, host: str) -> List[RemoteInstance]:
        ...


def _check_target(class_name: str, host: str) -> None:
    if not is_identifier(class_name):
        raise QueryError(f"Refusing to query invalid class name: {class_name!r}")
    if not is_hostname(host):
        raise QueryError(
            f"Refusing to query host name {host!r}: only letters, digits and . _ : - are accepted"
        )


def _select_clause(class_name: str) -> str:
    properties = CLASS_PROPERTIES.get(class_name)
    if not properties:
        return ""
    return " | Select-Object -Property " + ",".join(properties)


def parse_instances(text: str) -> List[RemoteInstance]:
    """
    Parse ConvertTo-Json output into a list of instances.
    PowerShell emits nothing for zero objects, a bare object for one and an
    array for several.
    """
    text = text.lstrip("\ufeff").strip()
    if not text:
        return []
    try:
        data: Any = json.loads(text)
    except ValueError as e:
        raise QueryError(f"Unparsable query output: {e}") from e
    if isinstance(data, dict):
        return [data]
    if isinstance(data, list) and all(isinstance(item, dict) for item in data):
        return list(data)
    raise QueryError(f"Unexpected query output type: {type(data).__name__}")


def _decode(raw: Any) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", "replace")
    return str(raw or "")


class WsmanProtocol:
    """
    Query over WS-Management: open a WinRM session to the host and run
    Get-CimInstance there.
    """

    name = "wsman"

    def __init__(
        self,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        transport: str = "ntlm",
        scheme: str = "http",
        port: int = 5985,
        operation_timeout: int = 20,
        read_timeout: int = 30,
        cert_validation: str = "validate",
        session_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self._auth = (username or "", password or "")
        self._transport = transport
        self._scheme = scheme
        self._port = port
        self._operation_timeout = operation_timeout
        self._read_timeout = read_timeout
        self._cert_validation = cert_validation
        self._session_factory = session_factory or winrm.Session

    def endpoint(self, host: str) -> str:
        return f"{self._scheme}://{host}:{self._port}/wsman"

    def _open(self, host: str) -> Any:
        return self._session_factory(
            self.endpoint(host),
            auth=self._auth,
            transport=self._transport,
            server_cert_validation=self._cert_validation,
            operation_timeout_sec=self._operation_timeout,
            read_timeout_sec=self._read_timeout,
        )

    def query(self, class_name: str, host: str) -> List[RemoteInstance]:
        _check_target(class_name, host)
        script = (
            f"Get-CimInstance -ClassName {class_name} -ErrorAction Stop"
            f"{_select_clause(class_name)} | ConvertTo-Json -Compress -Depth 2"
        )
        try:
            result = self._open(host).run_ps(script)
        except Exception as e:
            raise QueryError(f"WinRM request to {self.endpoint(host)} failed: {e}") from e
        if result.status_code != 0:
            detail = _decode(result.std_err).strip() or f"exit status {result.status_code}"
            raise QueryError(f"Get-CimInstance {class_name} failed: {detail}")
        return parse_instances(_decode(result.std_out))


class DcomProtocol:
    """
    Query over DCOM: run Get-WmiObject -ComputerName from the local PowerShell,
    under the identity of the account running the inventory.
    """

    name = "dcom"

    def __init__(self, *, timeout: float = 60.0, runner: Optional[PowerShellRunner] = None) -> None:
        self._timeout = timeout
        self._runner = runner or make_runner()

    def query(self, class_name: str, host: str) -> List[RemoteInstance]:
        _check_target(class_name, host)
        script = (
            f"Get-WmiObject -Class {class_name} -ComputerName {quote(host)} -ErrorAction Stop"
            f"{_select_clause(class_name)} | ConvertTo-Json -Compress -Depth 2"
        )
        try:
            proc = self._runner(script, self._timeout)
        except FileNotFoundError as e:
            raise QueryError(f"PowerShell is not available: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise QueryError(f"Get-WmiObject {class_name} timed out after {self._timeout:g}s") from e
        if proc.returncode != 0:
            detail = (proc.stderr or "").strip() or f"exit status {proc.returncode}"
            raise QueryError(f"Get-WmiObject {class_name} failed: {detail}")
        return parse_instances(proc.stdout or "")


def build_protocols(
    names: Sequence[str],
    *,
    username: Optional[str] = None,
    password: Optional[str] = None,
    winrm_transport: str = "ntlm",
    winrm_scheme: str = "http",
    winrm_port: int = 5985,
    winrm_cert_validation: str = "validate",
    operation_timeout: int = 20,
    read_timeout: int = 30,
    ps_timeout: float = 60.0,
    powershell_exe: str = "powershell",
) -> List[QueryProtocol]:
    protocols: List[QueryProtocol] = []
    for name in names:
        if name == "wsman":
            protocols.append(
                WsmanProtocol(
                    username=username,
                    password=password,
                    transport=winrm_transport,
                    scheme=winrm_scheme,
                    port=winrm_port,
                    cert_validation=winrm_cert_validation,
                    operation_timeout=operation_timeout,
                    read_timeout=read_timeout,
                )
            )
        elif name == "dcom":
            protocols.append(DcomProtocol(timeout=ps_timeout, runner=make_runner(powershell_exe)))
        else:
            raise ConfigError(f"Unknown query protocol '{name}' (expected one of: {', '.join(PROTOCOL_NAMES)})")
    if not protocols:
        raise ConfigError("At least one query protocol is required")
    return protocols
