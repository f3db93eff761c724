import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "scripts"))

from sync_telemetry_report import _parse_payload, build_report


def test_parse_payload_ignores_unrelated_lines():
    assert _parse_payload("INFO uvicorn: started") is None
    assert _parse_payload("sync_telemetry={not json}") is None
    parsed = _parse_payload('INFO offline_sync: sync_telemetry={"attempted": 2, "replayed": 2}')
    assert parsed == {"attempted": 2, "replayed": 2}


def test_build_report_aggregates_flushes():
    rows = [
        {"attempted": 3, "replayed": 2, "retried": 1, "dropped": 0, "error_count": 0, "pending": 1},
        {"attempted": 1, "replayed": 0, "retried": 0, "dropped": 1, "error_count": 1, "pending": 0},
        {"attempted": 0, "replayed": 0, "retried": 0, "dropped": 0, "error_count": 0, "pending": 0},
    ]
    report = build_report(rows)
    assert report["total_flushes"] == 3
    assert report["empty_flushes"] == 1
    assert report["flushes_with_drops"] == 1
    assert report["totals"]["attempted"] == 4
    assert report["success_rate"] == 0.5
    assert report["drop_rate"] == 0.25
    assert report["last_pending"] == 0


def test_build_report_empty():
    report = build_report([])
    assert report["total_flushes"] == 0
    assert report["success_rate"] == 0.0
