from __future__ import annotations

from typing import Dict

from .schema import LicenseRecord, OperatingSystemRecord, ReportRecord

LICENSE_STATUS_LABELS: Dict[int, str] = {
    0: "Unlicensed",
    1: "Licensed",
    2: "OOBGrace",
    3: "OOTGrace",
    4: "NonGenuineGrace",
    5: "Notification",
    6: "ExtendedGrace",
}


def license_status_label(code: int) -> str:
    """
    Render a LicenseStatus code as "<code> (<label>)", e.g. "1 (Licensed)".
    Codes outside the known table keep the raw value: "99 (unknown)".
    """
    return f"{code} ({LICENSE_STATUS_LABELS.get(code, 'unknown')})"


def project_license(record: LicenseRecord, target: ReportRecord) -> None:
    """
    Copy a selected license record onto the report row.
    Optional attributes are written only when the remote instance carried them.
    """
    target.LicenseStatus = license_status_label(record.LicenseStatus)
    if record.Name is not None:
        target.LicenseProduct = record.Name
    if record.LicenseStatusReason is not None:
        target.LicenseReason = record.LicenseStatusReason
    if record.ProductKeyChannel is not None:
        target.ProductKeyChannel = record.ProductKeyChannel
    if record.DiscoveredKeyManagementServiceMachineName is not None:
        target.KMSServer = record.DiscoveredKeyManagementServiceMachineName
    if record.Description is not None:
        target.LicenseDescription = record.Description


def project_os(record: OperatingSystemRecord, target: ReportRecord) -> None:
    target.Type = record.Caption
    target.Version = record.Version
