from __future__ import annotations

import logging
from typing import Any, Dict, List, Tuple

import pytest

from license_inventory.normalize.schema import LICENSE_CLASS, OS_CLASS
from license_inventory.pipeline import collect_host, collect_report, summarize
from license_inventory.remote.retriever import InstanceRetriever
from license_inventory.util.errors import QueryError, SourceEnumerationError

PIPELINE_LOGGER = "license_inventory.pipeline"


class FleetProtocol:
    """Protocol double answering from a {(host, class): result} table."""

    def __init__(self, name: str, answers: Dict[Tuple[str, str], Any]) -> None:
        self.name = name
        self._answers = answers

    def query(self, class_name: str, host: str) -> List[Dict[str, Any]]:
        answer = self._answers.get((host, class_name), QueryError(f"{self.name} unreachable"))
        if isinstance(answer, Exception):
            raise answer
        return answer


class TrackingProgress:
    def __init__(self) -> None:
        self.hosts: List[str] = []

    def advance_host(self, host: str) -> None:
        self.hosts.append(host)


def _retriever(primary: Dict[Tuple[str, str], Any], secondary: Dict[Tuple[str, str], Any] | None = None) -> InstanceRetriever:
    return InstanceRetriever([FleetProtocol("wsman", primary), FleetProtocol("dcom", secondary or {})])


def test_end_to_end_reachable_and_unreachable_hosts(caplog) -> None:
    retriever = _retriever(
        {
            ("HOST-A", LICENSE_CLASS): [{"LicenseStatus": 1, "Name": "Windows Server Std"}],
            ("HOST-A", OS_CLASS): [{"Caption": "Windows Server 2022", "Version": "10.0.20348"}],
        }
    )
    caplog.set_level(logging.WARNING)

    records = collect_report(["HOST-A", "HOST-B"], retriever)

    assert [r.System for r in records] == ["HOST-A", "HOST-B"]
    host_a, host_b = records
    assert host_a.LicenseStatus == "1 (Licensed)"
    assert host_a.LicenseProduct == "Windows Server Std"
    assert host_a.Type == "Windows Server 2022"
    assert host_a.Version == "10.0.20348"
    assert host_b.as_dict() == {
        "System": "HOST-B",
        "Type": "Unknown",
        "Version": "Unknown",
        "LicenseProduct": "Unknown",
        "LicenseStatus": -1,
        "LicenseReason": -1,
        "LicenseDescription": "",
        "ProductKeyChannel": "",
        "KMSServer": "",
    }
    # One stage warning per failed stage; the retriever also logs one warning
    # per failed protocol attempt (four for HOST-B), counted separately below.
    stage_warnings = [r for r in caplog.records if r.name == PIPELINE_LOGGER]
    assert len(stage_warnings) == 2
    assert all(r.host == "HOST-B" for r in stage_warnings)
    assert [r.step for r in stage_warnings] == ["license", "os"]
    attempt_warnings = [r for r in caplog.records if r.name == "license_inventory.remote.retriever"]
    assert [r.host for r in attempt_warnings] == ["HOST-B"] * 4
    assert len(host_b.warnings) == 2
    assert host_a.warnings == []


def test_license_failure_does_not_block_os_fields() -> None:
    retriever = _retriever({("HOST-A", OS_CLASS): [{"Caption": "Windows 11 Enterprise", "Version": "10.0.22631"}]})

    record = collect_host("HOST-A", retriever)

    assert record.LicenseStatus == -1
    assert record.LicenseProduct == "Unknown"
    assert record.Type == "Windows 11 Enterprise"
    assert record.Version == "10.0.22631"


def test_os_failure_does_not_block_license_fields() -> None:
    retriever = _retriever(
        {},
        {
            ("HOST-A", LICENSE_CLASS): [
                {"LicenseStatus": 0, "Name": "Windows Eval"},
                {"LicenseStatus": 1, "Name": "Windows Ent", "ProductKeyChannel": "Volume:GVLK",
                 "DiscoveredKeyManagementServiceMachineName": "kms01"},
            ]
        },
    )

    record = collect_host("HOST-A", retriever)

    assert record.LicenseStatus == "1 (Licensed)"
    assert record.LicenseProduct == "Windows Ent"
    assert record.ProductKeyChannel == "Volume:GVLK"
    assert record.KMSServer == "kms01"
    assert record.Type == "Unknown"
    assert record.Version == "Unknown"


def test_only_unlicensed_instances_keep_defaults(caplog) -> None:
    retriever = _retriever({("HOST-A", LICENSE_CLASS): [{"LicenseStatus": 0, "Name": "a"}, {"LicenseStatus": 0}]})
    caplog.set_level(logging.WARNING)

    record = collect_host("HOST-A", retriever)

    assert record.LicenseStatus == -1
    assert record.LicenseProduct == "Unknown"
    assert [r.step for r in caplog.records if r.name == PIPELINE_LOGGER] == ["os"]


def test_missing_product_key_channel_keeps_default() -> None:
    retriever = _retriever({("HOST-A", LICENSE_CLASS): [{"LicenseStatus": 2, "Name": "Windows Pro"}]})

    record = collect_host("HOST-A", retriever)

    assert record.LicenseStatus == "2 (OOBGrace)"
    assert record.ProductKeyChannel == ""


def test_malformed_instance_is_isolated_to_its_stage() -> None:
    retriever = _retriever(
        {
            ("HOST-A", LICENSE_CLASS): [{"Name": "no status"}],
            ("HOST-A", OS_CLASS): [{"Caption": "Windows 10 Pro", "Version": "10.0.19045"}],
        }
    )

    record = collect_host("HOST-A", retriever)

    assert record.LicenseStatus == -1
    assert record.Type == "Windows 10 Pro"
    assert record.warnings and record.warnings[0].startswith("license:")


def test_unusable_instance_is_skipped_when_a_valid_one_exists(caplog) -> None:
    retriever = _retriever(
        {
            ("HOST-A", LICENSE_CLASS): [
                {"LicenseStatus": None, "Name": "odd sku"},
                {"LicenseStatus": "n/a", "Name": "broken sku"},
                {"LicenseStatus": 1, "Name": "Windows Ent"},
            ],
            ("HOST-A", OS_CLASS): [{"Caption": "Windows 11 Enterprise", "Version": "10.0.22631"}],
        }
    )
    caplog.set_level(logging.DEBUG, logger=PIPELINE_LOGGER)

    record = collect_host("HOST-A", retriever)

    assert record.LicenseStatus == "1 (Licensed)"
    assert record.LicenseProduct == "Windows Ent"
    assert record.warnings == []
    skipped = [r for r in caplog.records if r.name == PIPELINE_LOGGER and r.levelno == logging.DEBUG]
    assert len(skipped) == 2
    assert all(r.host == "HOST-A" for r in skipped)


def test_empty_os_result_keeps_defaults() -> None:
    retriever = _retriever({("HOST-A", OS_CLASS): []})
    record = collect_host("HOST-A", retriever)
    assert record.Type == "Unknown"


def test_unexpected_exception_is_contained() -> None:
    class Exploding:
        def fetch(self, class_name: str, host: str) -> List[Dict[str, Any]]:
            raise RuntimeError("boom")

    records = collect_report(["h1", "h2", "h3"], Exploding())

    assert [r.System for r in records] == ["h1", "h2", "h3"]
    assert all(r.LicenseStatus == -1 and r.Type == "Unknown" for r in records)


def test_collect_report_advances_progress_in_order() -> None:
    progress = TrackingProgress()
    collect_report(["b", "a", "c"], _retriever({}), progress=progress)
    assert progress.hosts == ["b", "a", "c"]


def test_collect_report_rejects_empty_host_set() -> None:
    with pytest.raises(SourceEnumerationError):
        collect_report([], _retriever({}))


def test_summarize_counts() -> None:
    retriever = _retriever(
        {
            ("HOST-A", LICENSE_CLASS): [{"LicenseStatus": 1}],
            ("HOST-A", OS_CLASS): [{"Caption": "Windows", "Version": "10"}],
            ("HOST-C", LICENSE_CLASS): [{"LicenseStatus": 5}],
        }
    )
    metrics = summarize(collect_report(["HOST-A", "HOST-B", "HOST-C"], retriever))
    assert metrics == {
        "hosts": 3,
        "licensed": 1,
        "license_data": 2,
        "os_data": 1,
        "unresolved": 1,
        "warnings": 3,
    }
