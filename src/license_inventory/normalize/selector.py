from __future__ import annotations

from typing import Iterable, Optional

from .schema import LicenseRecord


def select_license(records: Iterable[LicenseRecord]) -> Optional[LicenseRecord]:
    """
    Pick the single most relevant license record for a host.

    Records with LicenseStatus 0 (unlicensed SKUs) are dropped; among the rest
    the lowest status code wins, so a Licensed (1) product is reported ahead of
    any grace or notification state. Equal codes keep their input order.
    Returns None when no record has a non-zero status.
    """
    active = [r for r in records if r.LicenseStatus > 0]
    if not active:
        return None
    return sorted(active, key=lambda r: r.LicenseStatus)[0]
