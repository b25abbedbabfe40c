from __future__ import annotations

import csv
import io
from typing import Any, Dict, List

import pytest

from license_inventory import cli
from license_inventory.normalize.schema import LICENSE_CLASS, OS_CLASS
from license_inventory.remote.retriever import InstanceRetriever
from license_inventory.util.errors import ExitCode, QueryError, SourceEnumerationError


class OneHostProtocol:
    name = "wsman"

    def query(self, class_name: str, host: str) -> List[Dict[str, Any]]:
        if host != "HOST-A":
            raise QueryError("unreachable")
        if class_name == LICENSE_CLASS:
            return [{"LicenseStatus": 1, "Name": "Windows Server Std"}]
        if class_name == OS_CLASS:
            return [{"Caption": "Windows Server 2022", "Version": "10.0.20348"}]
        return []


@pytest.fixture(autouse=True)
def _fake_transport(monkeypatch) -> None:
    monkeypatch.setattr(cli, "build_retriever", lambda cfg: InstanceRetriever([OneHostProtocol()]))
    monkeypatch.setattr(cli, "setup_logging", lambda config=None: None)


def test_run_writes_csv_to_stdout(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["run", "HOST-A", "HOST-B", "--format", "csv", "--no-progress"])

    assert excinfo.value.code == 0
    rows = list(csv.DictReader(io.StringIO(capsys.readouterr().out)))
    assert [r["System"] for r in rows] == ["HOST-A", "HOST-B"]
    assert rows[0]["LicenseStatus"] == "1 (Licensed)"
    assert rows[0]["Type"] == "Windows Server 2022"
    assert rows[1]["LicenseStatus"] == "-1"
    assert rows[1]["Type"] == "Unknown"


def test_run_writes_jsonl_file(tmp_path) -> None:
    out = tmp_path / "report.jsonl"
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["run", "--hosts", "HOST-A", "--format", "jsonl", "--output", str(out), "--no-progress"])
    assert excinfo.value.code == 0
    assert '"LicenseProduct": "Windows Server Std"' in out.read_text(encoding="utf-8")


def test_list_hosts_prints_host_file(tmp_path, capsys) -> None:
    hosts_file = tmp_path / "hosts.txt"
    hosts_file.write_text("HOST-A\nHOST-B\n", encoding="utf-8")
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["list-hosts", "--hosts-file", str(hosts_file)])
    assert excinfo.value.code == 0
    assert capsys.readouterr().out.splitlines() == ["HOST-A", "HOST-B"]


def test_source_failure_maps_to_exit_code(monkeypatch) -> None:
    class BrokenSource:
        description = "broken"

        def hosts(self) -> List[str]:
            raise SourceEnumerationError("directory unavailable")

    monkeypatch.setattr(cli, "resolve_host_source", lambda cfg: BrokenSource())
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["run", "--no-progress"])
    assert excinfo.value.code == int(ExitCode.SOURCE_ERROR)


def test_config_error_maps_to_exit_code() -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["run", "HOST-A", "--protocols", "smb"])
    assert excinfo.value.code == int(ExitCode.CONFIG_ERROR)
