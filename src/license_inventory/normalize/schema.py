from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from ..util.errors import ProjectionError

RemoteInstance = Dict[str, Any]
ReportValue = Union[str, int]

LICENSE_CLASS = "SoftwareLicensingProduct"
OS_CLASS = "Win32_OperatingSystem"

UNKNOWN = "Unknown"
UNKNOWN_CODE = -1

# Column order of the report; also the key order of ReportRecord.as_dict().
REPORT_FIELDS: List[str] = [
    "System",
    "Type",
    "Version",
    "LicenseProduct",
    "LicenseStatus",
    "LicenseReason",
    "LicenseDescription",
    "ProductKeyChannel",
    "KMSServer",
]

# Properties requested from each remote class; protocols select only these.
LICENSE_PROPERTIES: List[str] = [
    "Name",
    "Description",
    "LicenseStatus",
    "LicenseStatusReason",
    "ProductKeyChannel",
    "DiscoveredKeyManagementServiceMachineName",
]
OS_PROPERTIES: List[str] = ["Caption", "Version"]

CLASS_PROPERTIES: Dict[str, List[str]] = {
    LICENSE_CLASS: LICENSE_PROPERTIES,
    OS_CLASS: OS_PROPERTIES,
}


@dataclass(frozen=True)
class RemoteClassQuery:
    class_name: str
    host: str

    @property
    def properties(self) -> List[str]:
        return list(CLASS_PROPERTIES.get(self.class_name, []))


def _optional(instance: Mapping[str, Any], key: str) -> Optional[Any]:
    value = instance.get(key)
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _optional_int(instance: Mapping[str, Any], key: str) -> Optional[int]:
    value = _optional(instance, key)
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class LicenseRecord:
    """
    One SoftwareLicensingProduct instance. Only LicenseStatus is guaranteed;
    every other attribute is None when the host's schema does not expose it.
    """

    LicenseStatus: int
    Name: Optional[str] = None
    LicenseStatusReason: Optional[int] = None
    ProductKeyChannel: Optional[str] = None
    DiscoveredKeyManagementServiceMachineName: Optional[str] = None
    Description: Optional[str] = None

    @classmethod
    def from_instance(cls, instance: Mapping[str, Any]) -> LicenseRecord:
        raw = instance.get("LicenseStatus")
        if raw is None or isinstance(raw, bool):
            raise ProjectionError("license instance has no LicenseStatus")
        try:
            status = int(raw)
        except (TypeError, ValueError) as e:
            raise ProjectionError(f"license instance has non-numeric LicenseStatus: {raw!r}") from e
        return cls(
            LicenseStatus=status,
            Name=_optional(instance, "Name"),
            LicenseStatusReason=_optional_int(instance, "LicenseStatusReason"),
            ProductKeyChannel=_optional(instance, "ProductKeyChannel"),
            DiscoveredKeyManagementServiceMachineName=_optional(
                instance, "DiscoveredKeyManagementServiceMachineName"
            ),
            Description=_optional(instance, "Description"),
        )


@dataclass(frozen=True)
class OperatingSystemRecord:
    Caption: str
    Version: str

    @classmethod
    def from_instance(cls, instance: Mapping[str, Any]) -> OperatingSystemRecord:
        missing = [key for key in OS_PROPERTIES if instance.get(key) is None]
        if missing:
            raise ProjectionError(f"operating system instance lacks {', '.join(missing)}")
        return cls(Caption=str(instance["Caption"]), Version=str(instance["Version"]))


@dataclass
class ReportRecord:
    """
    Fixed-schema report row. Fields start at sentinel defaults and are
    overwritten independently by the license and operating system stages.
    """

    System: str
    Type: str = UNKNOWN
    Version: str = UNKNOWN
    LicenseProduct: str = UNKNOWN
    LicenseStatus: ReportValue = UNKNOWN_CODE
    LicenseReason: ReportValue = UNKNOWN_CODE
    LicenseDescription: str = ""
    ProductKeyChannel: str = ""
    KMSServer: str = ""
    warnings: List[str] = field(default_factory=list, repr=False, compare=False)

    def as_dict(self) -> Dict[str, ReportValue]:
        return {name: getattr(self, name) for name in REPORT_FIELDS}

    @property
    def has_license_data(self) -> bool:
        return self.LicenseStatus != UNKNOWN_CODE

    @property
    def has_os_data(self) -> bool:
        return self.Type != UNKNOWN
