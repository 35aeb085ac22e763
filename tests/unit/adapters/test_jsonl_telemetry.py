import json
from decimal import Decimal

from riskgate.adapters.telemetry.jsonl import JsonlTelemetry


def _read_records(path):
    content = path.read_text(encoding="utf-8").strip()
    assert content, "expected telemetry sink to contain at least one record"
    return [json.loads(line) for line in content.splitlines()]


def test_jsonl_telemetry_writes_run_fields(tmp_path):
    sink = tmp_path / "nested" / "events.log.jsonl"
    telemetry = JsonlTelemetry(run_id="run_2", git_sha="abc123def456", sink_path=sink)

    telemetry.log("config_resolved", keys_total=3, cash=Decimal("10.50"))
    (record,) = _read_records(sink)

    assert record["event"] == "config_resolved"
    assert record["run_id"] == "run_2"
    assert record["git_sha"] == "abc123def456"
    assert record["keys_total"] == 3
    assert record["cash"] == "10.50"
    assert "ts_utc" in record
    assert "redacted_fields" not in record


def test_secret_fields_are_redacted(tmp_path):
    sink = tmp_path / "events.log.jsonl"
    telemetry = JsonlTelemetry(run_id="r", git_sha="g", sink_path=sink)

    telemetry.log("alpaca_configured", key_id="AK123", secret_key="shh", base_url="https://x")
    (record,) = _read_records(sink)

    assert record["key_id"] == "***REDACTED***"
    assert record["secret_key"] == "***REDACTED***"
    assert record["base_url"] == "https://x"
    assert record["redacted_fields"] == ["key_id", "secret_key"]


def test_records_are_appended(tmp_path):
    sink = tmp_path / "events.log.jsonl"
    telemetry = JsonlTelemetry(run_id="r", git_sha="g", sink_path=str(sink), secret_keys=["pin"])

    telemetry.log("run_started")
    telemetry.log("run_finished", pin=1234, exit_code=0)

    records = _read_records(sink)
    assert [r["event"] for r in records] == ["run_started", "run_finished"]
    assert records[1]["pin"] == "***REDACTED***"
