"""
Escalation Sweep Script - Runs one escalation pass outside the scheduler
Run: python -m scripts.run_escalation_sweep [--now 2026-03-04T10:00:00Z]
"""
import argparse
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from expenseflow.engine.engine import ApprovalEngine
from expenseflow.utils.idgen import generate_correlation_id
from expenseflow.utils.logger import set_correlation_id
from expenseflow.utils.time import format_iso, parse_iso, utc_now


def main():
    parser = argparse.ArgumentParser(description="Escalate stalled approvals once")
    parser.add_argument("--now", default=None, help="Evaluate as of this ISO 8601 time")
    args = parser.parse_args()

    now = parse_iso(args.now) if args.now else utc_now()
    set_correlation_id(generate_correlation_id())

    print(f"=== Escalation sweep as of {format_iso(now)} ===")
    escalated = ApprovalEngine().escalation_monitor.run_escalation_sweep(now=now)
    print(f"Escalated {escalated} expense(s)")


if __name__ == "__main__":
    main()
