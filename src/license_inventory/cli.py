from __future__ import annotations

import sys
from time import perf_counter
from typing import List, Optional, Sequence

from rich.console import Console

from .config import RunConfig, dump_config, load_run_config
from .directory.sources import resolve_host_source
from .export.csv import write_csv
from .export.jsonl import write_jsonl
from .export.table import render_table
from .logging import LogConfig, add_run_log_file, get_logger, setup_logging
from .normalize.schema import ReportRecord
from .pipeline import collect_report, summarize
from .remote.protocols import build_protocols
from .remote.retriever import InstanceRetriever
from .util.errors import ConfigError, ExportError, as_exit_code
from .util.rich_progress import RunProgress, render_run_summary_table

LOG = get_logger(__name__)


def build_retriever(cfg: RunConfig) -> InstanceRetriever:
    protocols = build_protocols(
        cfg.protocols,
        username=cfg.username,
        password=cfg.password,
        winrm_transport=cfg.winrm_transport,
        winrm_scheme=cfg.winrm_scheme,
        winrm_port=cfg.winrm_port,
        winrm_cert_validation=cfg.winrm_cert_validation,
        operation_timeout=cfg.operation_timeout,
        read_timeout=cfg.read_timeout,
        ps_timeout=cfg.ps_timeout,
        powershell_exe=cfg.powershell_exe,
    )
    return InstanceRetriever(protocols)


def emit_report(records: Sequence[ReportRecord], cfg: RunConfig) -> None:
    if cfg.format == "jsonl":
        if cfg.output is None:
            raise ConfigError("The jsonl format requires --output")
        write_jsonl(records, cfg.output)
    elif cfg.format == "csv":
        write_csv(records, cfg.output if cfg.output else sys.stdout, delimiter=cfg.delimiter)
    elif cfg.output is not None:
        try:
            cfg.output.parent.mkdir(parents=True, exist_ok=True)
            with cfg.output.open("w", encoding="utf-8") as f:
                render_table(records, Console(file=f, width=200))
        except OSError as e:
            raise ExportError(f"Failed to write {cfg.output}: {e}") from e
    else:
        render_table(records)
    if cfg.output is not None:
        LOG.info("Report written", extra={"step": "export", "path": str(cfg.output), "rows": len(records)})


def cmd_run(cfg: RunConfig) -> int:
    LOG.debug("Effective configuration", extra={"config": dump_config(cfg)})
    source = resolve_host_source(cfg)
    hosts: List[str] = source.hosts()
    retriever = build_retriever(cfg)
    LOG.info(
        "Collecting license state for %d host(s) from %s",
        len(hosts),
        source.description,
        extra={"step": "collect"},
    )

    started = perf_counter()
    show_progress = cfg.progress and sys.stderr.isatty()
    with RunProgress(enabled=show_progress) as progress:
        progress.start_hosts(hosts)
        records = collect_report(hosts, retriever, progress=progress)
    metrics = summarize(records)
    LOG.info(
        "Collection finished",
        extra={"step": "collect", "duration_ms": int((perf_counter() - started) * 1000), **metrics},
    )

    emit_report(records, cfg)
    render_run_summary_table(
        enabled=show_progress,
        metrics=metrics,
        source=source.description,
        protocols=retriever.protocol_names,
    )
    return 0


def cmd_list_hosts(cfg: RunConfig) -> int:
    source = resolve_host_source(cfg)
    hosts = source.hosts()
    for host in hosts:
        print(host)
    LOG.info("Resolved %d host(s) from %s", len(hosts), source.description, extra={"step": "list-hosts"})
    return 0


def main(argv: Optional[Sequence[str]] = None) -> None:
    try:
        command, cfg = load_run_config(argv=list(argv) if argv is not None else None)
        setup_logging(LogConfig(level=cfg.log_level, json_logs=cfg.json_logs))
        if cfg.log_file:
            add_run_log_file(cfg.log_file)

        if command == "run":
            code = cmd_run(cfg)
        elif command == "list-hosts":
            code = cmd_list_hosts(cfg)
        else:
            raise ConfigError(f"Unknown command: {command}")

        sys.exit(code)
    except SystemExit:
        raise
    except BrokenPipeError:
        # Common when users pipe to `head` or similar tools.
        sys.exit(0)
    except Exception as e:
        setup_logging(LogConfig())
        LOG.error("Execution failed", extra={"error": str(e)})
        sys.exit(as_exit_code(e))


if __name__ == "__main__":
    main()
