from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table


class RunProgress:
    """
    Host-by-host progress bar on stderr. Disabled instances are no-ops so the
    pipeline can call advance_host unconditionally.
    """

    def __init__(self, *, enabled: bool, console: Optional[Console] = None) -> None:
        self._enabled = bool(enabled)
        self._console = console or Console(stderr=True)
        self._progress: Optional[Progress] = None
        self._task: Optional[int] = None
        self._started = False
        if self._enabled:
            self._progress = Progress(
                TextColumn("{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TextColumn("{task.fields[host]}", justify="left"),
                TimeElapsedColumn(),
                console=self._console,
                transient=True,
            )

    def __enter__(self) -> RunProgress:
        if self._enabled and self._progress and not self._started:
            self._progress.start()
            self._started = True
        return self

    def __exit__(self, exc_type: Any, exc: Any, exc_tb: Any) -> None:
        if self._enabled and self._progress and self._started:
            self._progress.stop()
            self._started = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start_hosts(self, hosts: Sequence[str]) -> None:
        if not self._enabled or not self._progress:
            return
        self._task = self._progress.add_task("Hosts", total=len(hosts), host="")

    def advance_host(self, host: str) -> None:
        if not self._enabled or not self._progress or self._task is None:
            return
        self._progress.update(self._task, advance=1, host=host)


def render_run_summary_table(
    *,
    enabled: bool,
    metrics: Dict[str, Any],
    source: str,
    protocols: Sequence[str],
    console: Optional[Console] = None,
) -> None:
    if not enabled:
        return
    table = Table(title="Run Summary", show_header=True, header_style="bold")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Host source", source)
    table.add_row("Protocols", " -> ".join(protocols))
    table.add_row("Hosts", str(metrics.get("hosts", 0)))
    table.add_row("Licensed", str(metrics.get("licensed", 0)))
    table.add_row("With license data", str(metrics.get("license_data", 0)))
    table.add_row("With OS data", str(metrics.get("os_data", 0)))
    table.add_row("Unresolved", str(metrics.get("unresolved", 0)))
    table.add_row("Warnings", str(metrics.get("warnings", 0)))
    (console or Console(stderr=True)).print(table)
