from __future__ import annotations

import argparse
import json
import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .util.errors import ConfigError

# --------
# Defaults
# --------
DEFAULT_PROTOCOLS = ["wsman", "dcom"]
DEFAULT_FILTER = "*"
DEFAULT_FORMAT = "table"
OUTPUT_FORMATS = {"table", "csv", "jsonl"}
PROTOCOL_CHOICES = {"wsman", "dcom"}
WINRM_TRANSPORTS = {"ntlm", "kerberos", "basic", "credssp"}
WINRM_SCHEMES = {"http", "https"}
WINRM_DEFAULT_PORTS = {"http": 5985, "https": 5986}
WINRM_CERT_VALIDATION = {"validate", "ignore"}

ALLOWED_CONFIG_KEYS = {
    "hosts",
    "hosts_file",
    "search_base",
    "filter",
    "ldap_filter",
    "inactive_days",
    "ad_server",
    "protocols",
    "winrm_transport",
    "winrm_scheme",
    "winrm_port",
    "winrm_cert_validation",
    "username",
    "password",
    "operation_timeout",
    "read_timeout",
    "ps_timeout",
    "powershell_exe",
    "format",
    "output",
    "delimiter",
    "progress",
    "log_level",
    "json_logs",
    "log_file",
}
BOOL_CONFIG_KEYS = {"progress", "json_logs"}
INT_CONFIG_KEYS = {"inactive_days", "winrm_port", "operation_timeout", "read_timeout", "ps_timeout"}
LIST_CONFIG_KEYS = {"hosts", "protocols"}
PATH_CONFIG_KEYS = {"hosts_file", "output", "log_file"}
STR_CONFIG_KEYS = {
    "search_base",
    "filter",
    "ldap_filter",
    "ad_server",
    "winrm_transport",
    "winrm_scheme",
    "winrm_cert_validation",
    "username",
    "password",
    "powershell_exe",
    "format",
    "delimiter",
    "log_level",
}


@dataclass(frozen=True)
class RunConfig:
    # Host source
    hosts: Optional[List[str]] = None
    hosts_file: Optional[Path] = None
    search_base: Optional[str] = None
    filter: str = DEFAULT_FILTER
    ldap_filter: Optional[str] = None
    inactive_days: int = 0
    ad_server: Optional[str] = None

    # Remote query
    protocols: List[str] = field(default_factory=lambda: list(DEFAULT_PROTOCOLS))
    winrm_transport: str = "ntlm"
    winrm_scheme: str = "http"
    winrm_port: int = 5985
    winrm_cert_validation: str = "validate"
    username: Optional[str] = None
    password: Optional[str] = None
    operation_timeout: int = 20
    read_timeout: int = 30
    ps_timeout: int = 60
    powershell_exe: str = "powershell"

    # Output
    format: str = DEFAULT_FORMAT
    output: Optional[Path] = None
    delimiter: str = ","
    progress: bool = True

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False
    log_file: Optional[Path] = None


def _parse_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text) or {}
    except (ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("Top-level config must be an object")
    return data


def _env_str(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def _env_bool(name: str) -> Optional[bool]:
    raw = _env_str(name)
    if raw is None:
        return None
    return raw.lower() in {"1", "true", "yes", "on"}


def _env_int(name: str) -> Optional[int]:
    raw = _env_str(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw in {"1", "true", "yes", "on"}:
            return True
        if raw in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Config field '{key}' must be a boolean")


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return int(value)
        except ValueError:
            pass
    raise ConfigError(f"Config field '{key}' must be an integer")


def _split_list(value: Any, key: str) -> List[str]:
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return [v.strip() for v in value if v.strip()]
    raise ConfigError(f"Config field '{key}' must be a list of strings or comma-separated string")


def _normalize_config_file(data: Dict[str, Any]) -> Dict[str, Any]:
    unknown = sorted(set(data.keys()) - ALLOWED_CONFIG_KEYS)
    if unknown:
        warnings.warn(f"Unknown config keys ignored: {', '.join(unknown)}")
    normalized: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in ALLOWED_CONFIG_KEYS or value is None:
            continue
        if key in LIST_CONFIG_KEYS:
            normalized[key] = _split_list(value, key)
        elif key in BOOL_CONFIG_KEYS:
            normalized[key] = _coerce_bool(key, value)
        elif key in INT_CONFIG_KEYS:
            normalized[key] = _coerce_int(key, value)
        elif key in PATH_CONFIG_KEYS:
            if not isinstance(value, (str, Path)):
                raise ConfigError(f"Config field '{key}' must be a string path")
            normalized[key] = value
        elif key in STR_CONFIG_KEYS:
            if not isinstance(value, str):
                raise ConfigError(f"Config field '{key}' must be a string")
            normalized[key] = value
    return normalized


def _compact_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Drop keys with None values so they don't override lower-precedence config.
    """
    return {k: v for k, v in data.items() if v is not None}


def _merge_dicts(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(a)
    merged.update(b)
    return merged


def _choice(key: str, value: Any, allowed: set[str]) -> str:
    text = str(value).strip().lower()
    if text not in allowed:
        raise ConfigError(f"Config field '{key}' must be one of: {', '.join(sorted(allowed))}")
    return text


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lic-inv", description="Windows license activation inventory")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", type=Path, help="Optional YAML/JSON config file")
        p.add_argument("--json-logs", action=argparse.BooleanOptionalAction, default=None, help="Enable JSON logs")
        p.add_argument("--log-level", default=None, help="Log level (INFO, DEBUG, ...)")
        p.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")
        # Host source
        p.add_argument("hosts", nargs="*", help="Hosts to inventory (skips the directory query)")
        p.add_argument("--hosts", dest="hosts_csv", default=None, help="Comma-separated hosts")
        p.add_argument("--hosts-file", type=Path, default=None, help="File with one host per line")
        p.add_argument("--search-base", default=None, help="AD search base (distinguished name)")
        p.add_argument("--filter", default=None, help=f"Get-ADComputer -Filter (default {DEFAULT_FILTER!r})")
        p.add_argument("--ldap-filter", default=None, help="Get-ADComputer -LDAPFilter (overrides --filter)")
        p.add_argument(
            "--inactive-days",
            type=int,
            default=None,
            help="Skip computers without a logon in this many days (0 disables)",
        )
        p.add_argument("--ad-server", default=None, help="Domain controller to query")
        p.add_argument("--ps-timeout", type=int, default=None, help="PowerShell command timeout in seconds")
        p.add_argument("--powershell-exe", default=None, help="PowerShell executable (powershell or pwsh)")

    p_run = subparsers.add_parser("run", help="Query hosts and emit the license report")
    add_common(p_run)
    p_run.add_argument(
        "--protocols",
        default=None,
        help=f"Comma-separated protocol order (default {','.join(DEFAULT_PROTOCOLS)})",
    )
    p_run.add_argument("--winrm-transport", default=None, choices=sorted(WINRM_TRANSPORTS))
    p_run.add_argument("--winrm-scheme", default=None, choices=sorted(WINRM_SCHEMES))
    p_run.add_argument("--winrm-port", type=int, default=None)
    p_run.add_argument(
        "--winrm-cert-validation",
        default=None,
        choices=sorted(WINRM_CERT_VALIDATION),
        help="TLS certificate check for https WinRM endpoints (default validate)",
    )
    p_run.add_argument("--username", default=None, help="WinRM user (DOMAIN\\user or user@domain)")
    p_run.add_argument("--operation-timeout", type=int, default=None, help="WinRM operation timeout (seconds)")
    p_run.add_argument("--read-timeout", type=int, default=None, help="WinRM read timeout (seconds)")
    p_run.add_argument("--format", default=None, choices=sorted(OUTPUT_FORMATS), help="Report format")
    p_run.add_argument("--output", "-o", type=Path, default=None, help="Write the report to this file")
    p_run.add_argument("--delimiter", default=None, help="CSV delimiter (default ',')")
    p_run.add_argument("--progress", action=argparse.BooleanOptionalAction, default=None, help="Show progress bar")

    p_list = subparsers.add_parser("list-hosts", help="Resolve the host source and print it")
    add_common(p_list)
    return parser


def load_run_config(
    args: Optional[argparse.Namespace] = None,
    argv: Optional[list[str]] = None,
) -> Tuple[str, RunConfig]:
    """
    Build RunConfig by merging defaults, optional config file, env vars, and CLI args.
    Precedence (low -> high): defaults < config file < env < CLI.

    Returns:
      (command, RunConfig) where command is run|list-hosts
    """
    ns = args if args is not None else build_parser().parse_args(argv)
    command = ns.command

    base: Dict[str, Any] = {
        "filter": DEFAULT_FILTER,
        "inactive_days": 0,
        "protocols": list(DEFAULT_PROTOCOLS),
        "winrm_transport": "ntlm",
        "winrm_scheme": "http",
        "winrm_cert_validation": "validate",
        "operation_timeout": 20,
        "read_timeout": 30,
        "ps_timeout": 60,
        "powershell_exe": "powershell",
        "format": DEFAULT_FORMAT,
        "delimiter": ",",
        "progress": True,
        "log_level": "INFO",
        "json_logs": False,
    }

    file_cfg: Dict[str, Any] = {}
    if getattr(ns, "config", None):
        file_cfg = _normalize_config_file(_parse_config_file(Path(ns.config)))

    env_cfg: Dict[str, Any] = _compact_dict(
        {
            "hosts": _env_str("LIC_INV_HOSTS"),
            "hosts_file": _env_str("LIC_INV_HOSTS_FILE"),
            "search_base": _env_str("LIC_INV_SEARCH_BASE"),
            "filter": _env_str("LIC_INV_FILTER"),
            "ldap_filter": _env_str("LIC_INV_LDAP_FILTER"),
            "inactive_days": _env_int("LIC_INV_INACTIVE_DAYS"),
            "ad_server": _env_str("LIC_INV_AD_SERVER"),
            "protocols": _env_str("LIC_INV_PROTOCOLS"),
            "winrm_transport": _env_str("LIC_INV_WINRM_TRANSPORT"),
            "winrm_scheme": _env_str("LIC_INV_WINRM_SCHEME"),
            "winrm_port": _env_int("LIC_INV_WINRM_PORT"),
            "winrm_cert_validation": _env_str("LIC_INV_WINRM_CERT_VALIDATION"),
            "username": _env_str("LIC_INV_USERNAME"),
            "password": _env_str("LIC_INV_PASSWORD"),
            "operation_timeout": _env_int("LIC_INV_OPERATION_TIMEOUT"),
            "read_timeout": _env_int("LIC_INV_READ_TIMEOUT"),
            "ps_timeout": _env_int("LIC_INV_PS_TIMEOUT"),
            "powershell_exe": _env_str("LIC_INV_POWERSHELL"),
            "format": _env_str("LIC_INV_FORMAT"),
            "output": _env_str("LIC_INV_OUTPUT"),
            "progress": _env_bool("LIC_INV_PROGRESS"),
            "log_level": _env_str("LIC_INV_LOG_LEVEL"),
            "json_logs": _env_bool("LIC_INV_JSON_LOGS"),
            "log_file": _env_str("LIC_INV_LOG_FILE"),
        }
    )

    cli_hosts: List[str] = list(getattr(ns, "hosts", None) or [])
    if getattr(ns, "hosts_csv", None):
        cli_hosts.extend(_split_list(ns.hosts_csv, "hosts"))
    cli_cfg: Dict[str, Any] = _compact_dict(
        {
            "hosts": cli_hosts or None,
            "hosts_file": getattr(ns, "hosts_file", None),
            "search_base": getattr(ns, "search_base", None),
            "filter": getattr(ns, "filter", None),
            "ldap_filter": getattr(ns, "ldap_filter", None),
            "inactive_days": getattr(ns, "inactive_days", None),
            "ad_server": getattr(ns, "ad_server", None),
            "protocols": getattr(ns, "protocols", None),
            "winrm_transport": getattr(ns, "winrm_transport", None),
            "winrm_scheme": getattr(ns, "winrm_scheme", None),
            "winrm_port": getattr(ns, "winrm_port", None),
            "winrm_cert_validation": getattr(ns, "winrm_cert_validation", None),
            "username": getattr(ns, "username", None),
            "operation_timeout": getattr(ns, "operation_timeout", None),
            "read_timeout": getattr(ns, "read_timeout", None),
            "ps_timeout": getattr(ns, "ps_timeout", None),
            "powershell_exe": getattr(ns, "powershell_exe", None),
            "format": getattr(ns, "format", None),
            "output": getattr(ns, "output", None),
            "delimiter": getattr(ns, "delimiter", None),
            "progress": getattr(ns, "progress", None),
            "log_level": getattr(ns, "log_level", None),
            "json_logs": getattr(ns, "json_logs", None),
            "log_file": getattr(ns, "log_file", None),
        }
    )

    merged = _merge_dicts(base, _merge_dicts(file_cfg, _merge_dicts(env_cfg, cli_cfg)))

    hosts = _split_list(merged["hosts"], "hosts") if merged.get("hosts") else None
    protocols = _split_list(merged["protocols"], "protocols")
    if not protocols:
        raise ConfigError("At least one query protocol is required")
    for name in protocols:
        _choice("protocols", name, PROTOCOL_CHOICES)
    protocols = [p.lower() for p in protocols]

    scheme = _choice("winrm_scheme", merged["winrm_scheme"], WINRM_SCHEMES)
    winrm_port = int(merged.get("winrm_port") or WINRM_DEFAULT_PORTS[scheme])
    operation_timeout = int(merged["operation_timeout"])
    read_timeout = int(merged["read_timeout"])
    if read_timeout <= operation_timeout:
        raise ConfigError("read_timeout must be greater than operation_timeout")
    inactive_days = int(merged["inactive_days"])
    if inactive_days < 0:
        raise ConfigError("inactive_days must not be negative")

    fmt = _choice("format", merged["format"], OUTPUT_FORMATS)
    output = Path(merged["output"]) if merged.get("output") else None
    if fmt == "jsonl" and output is None:
        raise ConfigError("The jsonl format requires --output")
    delimiter = str(merged["delimiter"])
    if len(delimiter) != 1:
        raise ConfigError("delimiter must be a single character")

    cfg = RunConfig(
        hosts=hosts,
        hosts_file=Path(merged["hosts_file"]) if merged.get("hosts_file") else None,
        search_base=merged.get("search_base") or None,
        filter=str(merged.get("filter") or DEFAULT_FILTER),
        ldap_filter=merged.get("ldap_filter") or None,
        inactive_days=inactive_days,
        ad_server=merged.get("ad_server") or None,
        protocols=protocols,
        winrm_transport=_choice("winrm_transport", merged["winrm_transport"], WINRM_TRANSPORTS),
        winrm_scheme=scheme,
        winrm_port=winrm_port,
        winrm_cert_validation=_choice("winrm_cert_validation", merged["winrm_cert_validation"], WINRM_CERT_VALIDATION),
        username=merged.get("username") or None,
        password=merged.get("password") or None,
        operation_timeout=operation_timeout,
        read_timeout=read_timeout,
        ps_timeout=int(merged["ps_timeout"]),
        powershell_exe=str(merged["powershell_exe"]),
        format=fmt,
        output=output,
        delimiter=delimiter,
        progress=bool(merged["progress"]),
        log_level=str(merged.get("log_level") or "INFO").upper(),
        json_logs=bool(merged["json_logs"]),
        log_file=Path(merged["log_file"]) if merged.get("log_file") else None,
    )
    return command, cfg


def dump_config(cfg: RunConfig) -> Dict[str, Any]:
    return {
        "hosts": cfg.hosts,
        "hosts_file": str(cfg.hosts_file) if cfg.hosts_file else None,
        "search_base": cfg.search_base,
        "filter": cfg.filter,
        "ldap_filter": cfg.ldap_filter,
        "inactive_days": cfg.inactive_days,
        "ad_server": cfg.ad_server,
        "protocols": cfg.protocols,
        "winrm_transport": cfg.winrm_transport,
        "winrm_scheme": cfg.winrm_scheme,
        "winrm_port": cfg.winrm_port,
        "winrm_cert_validation": cfg.winrm_cert_validation,
        "username": cfg.username,
        "password": "<redacted>" if cfg.password else None,
        "operation_timeout": cfg.operation_timeout,
        "read_timeout": cfg.read_timeout,
        "ps_timeout": cfg.ps_timeout,
        "powershell_exe": cfg.powershell_exe,
        "format": cfg.format,
        "output": str(cfg.output) if cfg.output else None,
        "delimiter": cfg.delimiter,
        "progress": cfg.progress,
        "log_level": cfg.log_level,
        "json_logs": cfg.json_logs,
        "log_file": str(cfg.log_file) if cfg.log_file else None,
    }
