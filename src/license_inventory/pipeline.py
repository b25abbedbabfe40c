from __future__ import annotations

from typing import Iterable, List, Optional, Protocol, Sequence

from .logging import get_logger
from .normalize.schema import (
    LICENSE_CLASS,
    OS_CLASS,
    LicenseRecord,
    OperatingSystemRecord,
    RemoteInstance,
    ReportRecord,
)
from .normalize.selector import select_license
from .normalize.transform import project_license, project_os
from .util.errors import ProjectionError, SourceEnumerationError

LOG = get_logger(__name__)


class Retriever(Protocol):
    def fetch(self, class_name: str, host: str) -> List[RemoteInstance]:
        ...


class HostProgress(Protocol):
    def advance_host(self, host: str) -> None:
        ...


def _warn(record: ReportRecord, step: str, message: str, error: BaseException) -> None:
    record.warnings.append(f"{step}: {error}")
    LOG.warning(message, extra={"host": record.System, "step": step, "error": str(error)})


def _license_records(host: str, instances: Sequence[RemoteInstance]) -> List[LicenseRecord]:
    """
    Validate each instance on its own. Instances without a usable LicenseStatus
    are skipped; the last ProjectionError is re-raised only when none survive.
    """
    records: List[LicenseRecord] = []
    last_error: Optional[ProjectionError] = None
    for instance in instances:
        try:
            records.append(LicenseRecord.from_instance(instance))
        except ProjectionError as e:
            last_error = e
            LOG.debug("Skipping license instance", extra={"host": host, "step": "license", "error": str(e)})
    if not records and last_error is not None:
        raise last_error
    return records


def _license_stage(host: str, retriever: Retriever, record: ReportRecord) -> None:
    instances = retriever.fetch(LICENSE_CLASS, host)
    selected = select_license(_license_records(host, instances))
    if selected is None:
        LOG.info("No active license product found", extra={"host": host, "step": "license"})
        return
    project_license(selected, record)


def _os_stage(host: str, retriever: Retriever, record: ReportRecord) -> None:
    instances = retriever.fetch(OS_CLASS, host)
    if not instances:
        LOG.warning("No operating system instance returned", extra={"host": host, "step": "os"})
        return
    project_os(OperatingSystemRecord.from_instance(instances[0]), record)


def collect_host(host: str, retriever: Retriever) -> ReportRecord:
    """
    Build the report row for one host.

    The license and operating system stages run independently: an exception
    in either is logged against the host and leaves that stage's fields at
    their defaults. The row is always returned.
    """
    record = ReportRecord(System=host)
    try:
        _license_stage(host, retriever, record)
    except Exception as e:
        _warn(record, "license", "Unable to query license status", e)
    try:
        _os_stage(host, retriever, record)
    except Exception as e:
        _warn(record, "os", "Unable to query operating system", e)
    return record


def collect_report(
    hosts: Sequence[str] | Iterable[str],
    retriever: Retriever,
    *,
    progress: Optional[HostProgress] = None,
) -> List[ReportRecord]:
    """
    Run the per-host pipeline sequentially, one row per host in input order.
    """
    host_list = list(hosts)
    if not host_list:
        raise SourceEnumerationError("No hosts to inventory")
    records: List[ReportRecord] = []
    for host in host_list:
        records.append(collect_host(host, retriever))
        if progress is not None:
            progress.advance_host(host)
    return records


def summarize(records: Sequence[ReportRecord]) -> dict:
    """Counts for the run summary table."""
    return {
        "hosts": len(records),
        "licensed": sum(1 for r in records if str(r.LicenseStatus).startswith("1 (")),
        "license_data": sum(1 for r in records if r.has_license_data),
        "os_data": sum(1 for r in records if r.has_os_data),
        "unresolved": sum(1 for r in records if not r.has_license_data and not r.has_os_data),
        "warnings": sum(len(r.warnings) for r in records),
    }
