#!/usr/bin/env python3
import argparse
import json
import re
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

TELEMETRY_PATTERN = re.compile(r"sync_telemetry=(\{.*\})")
COUNTERS = ("attempted", "replayed", "retried", "dropped", "error_count")


def _iter_lines(paths: List[str]) -> Iterable[str]:
    if not paths:
        for line in sys.stdin:
            yield line.rstrip("\n")
        return
    for path in paths:
        with open(path, "r", encoding="utf-8", errors="replace") as handle:
            for line in handle:
                yield line.rstrip("\n")


def _parse_payload(line: str) -> Optional[Dict[str, Any]]:
    match = TELEMETRY_PATTERN.search(line)
    if not match:
        return None
    try:
        value = json.loads(match.group(1))
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def _safe_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def build_report(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    totals = {name: 0 for name in COUNTERS}
    flushes_with_drops = 0
    empty_flushes = 0
    last_pending = 0

    for row in rows:
        for name in COUNTERS:
            totals[name] += _safe_int(row.get(name, 0))
        if _safe_int(row.get("dropped", 0)) > 0:
            flushes_with_drops += 1
        if _safe_int(row.get("attempted", 0)) == 0:
            empty_flushes += 1
        last_pending = _safe_int(row.get("pending", 0))

    attempts = totals["attempted"]
    return {
        "total_flushes": len(rows),
        "empty_flushes": empty_flushes,
        "flushes_with_drops": flushes_with_drops,
        "totals": totals,
        "success_rate": round(totals["replayed"] / attempts, 4) if attempts else 0.0,
        "drop_rate": round(totals["dropped"] / attempts, 4) if attempts else 0.0,
        "last_pending": last_pending,
    }


def print_human(report: Dict[str, Any]) -> None:
    totals = report["totals"]
    print(f"Total flushes: {report['total_flushes']} (empty: {report['empty_flushes']})")
    print(
        f"Attempts: {totals['attempted']} replayed={totals['replayed']} "
        f"retried={totals['retried']} dropped={totals['dropped']}"
    )
    print(f"Success rate: {report['success_rate']:.2%}")
    print(f"Drop rate: {report['drop_rate']:.2%} across {report['flushes_with_drops']} flush(es)")
    print(f"Storage errors: {totals['error_count']}")
    print(f"Pending after last flush: {report['last_pending']}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Summarize offline queue sync_telemetry logs.")
    parser.add_argument("log_files", nargs="*", help="Log files to parse. If omitted, read stdin.")
    parser.add_argument("--json-out", default="", help="Optional path to write JSON summary.")
    args = parser.parse_args()

    rows: List[Dict[str, Any]] = []
    for line in _iter_lines(args.log_files):
        payload = _parse_payload(line)
        if payload:
            rows.append(payload)

    report = build_report(rows)
    print_human(report)

    if args.json_out:
        path = Path(args.json_out)
        path.write_text(json.dumps(report, indent=2) + "\n", encoding="utf-8")
        print(f"Wrote report: {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
