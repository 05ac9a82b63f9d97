#!/usr/bin/env python3
"""
Diagnose and repair dose schedules for a patient.
Usage: python scripts/repair_schedules.py --patient-id <id> [--dry-run] [--json]
"""
import argparse
import asyncio
import json
import logging
import os
import sys

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from config import settings
from database import init_db
from errors import CareCadenceError
from services.repair_service import repair_service


def print_report(report: dict):
    mode = "dry run" if report["dry_run"] else "repair"
    print(f"Schedule {mode} for patient {report['patient_id']}")
    print(f"  Issues found:  {report['issues_found']}")
    print(f"  Fixes applied: {report['fixes_applied']}")
    for detail in report["details"]:
        fixed = "fixed" if detail.get("fixed") else "open"
        print(f"  - [{fixed}] {detail['issue']} {detail['medication_name']}: {detail['description']}")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Diagnose and repair a patient's dose schedules")
    parser.add_argument("--patient-id", required=True, help="Patient ID")
    parser.add_argument("--dry-run", action="store_true", help="Report issues without fixing them")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL), format=settings.LOG_FORMAT)

    init_db()
    try:
        report = asyncio.run(
            repair_service.diagnose_and_repair_schedules(args.patient_id, dry_run=args.dry_run)
        )
    except CareCadenceError as e:
        print(f"Error: {e.reason}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(report, indent=2, default=str))
    else:
        print_report(report)
    return 0


if __name__ == '__main__':
    sys.exit(main())
