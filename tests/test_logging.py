from __future__ import annotations

import json
import logging

from license_inventory.logging import JsonFormatter, PlainFormatter


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="license_inventory.pipeline",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg="Unable to query %s",
        args=("license status",),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_safe_extras_only() -> None:
    payload = json.loads(JsonFormatter().format(_record(host="HOST-B", step="license", blob=object())))

    assert payload["message"] == "Unable to query license status"
    assert payload["level"] == "WARNING"
    assert payload["host"] == "HOST-B"
    assert payload["step"] == "license"
    assert "blob" not in payload
    assert payload["timestamp"].endswith("Z")


def test_plain_formatter_prefixes_host_and_step() -> None:
    line = PlainFormatter().format(_record(host="HOST-B", step="os", error="RPC server unavailable"))

    assert "WARNING license_inventory.pipeline: HOST-B: [os] Unable to query license status" in line
    assert line.endswith("(RPC server unavailable)")
