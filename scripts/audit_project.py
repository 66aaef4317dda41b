#!/usr/bin/env python3
"""
Report aggregate drift and broken installment rows for one project.

Read-only.  Prints one block per defective sale or expense and exits 1 when
anything is found, so it can run from cron.  ``--repair`` rewrites the
drifted aggregates through the command facade (row violations are never
repaired automatically).

Usage:
    python3 scripts/audit_project.py 6f1c...-project-uuid
    python3 scripts/audit_project.py 6f1c... --repair --db-url sqlite:///payments.db
"""

import argparse
import sys
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from scripts.add_payment_method import SYSTEM_ACTOR  # noqa: E402
from scripts.init_db import resolve_url  # noqa: E402


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Audit stored aggregates of a project")
    p.add_argument("project_id", type=UUID)
    p.add_argument("--repair", action="store_true", help="Recompute drifted aggregates")
    p.add_argument("--config", default=None, help="Reconciliation YAML config")
    p.add_argument("--db-url", default=None, help="Database URL")
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from payment_kernel.config import load_config
    from payment_kernel.db.engine import get_session, init_engine_from_url
    from payment_kernel.selectors.audit_selector import AuditSelector
    from payment_kernel.services.payment_commands import PaymentCommandService

    config = load_config(args.config)
    init_engine_from_url(resolve_url(args.db_url, config))

    session = get_session()
    try:
        reports = AuditSelector(session, config).audit_project(args.project_id)
        session.rollback()

        for report in reports:
            print(f"{report.parent_type.value} {report.parent_id}")
            if report.has_drift:
                print(f"  stored:     {report.stored.total_paid} / {report.stored.status.value}")
                print(f"  recomputed: {report.recomputed.total_paid} / {report.recomputed.status.value}")
            for problem in report.row_violations:
                print(f"  row {problem}")

            if args.repair and report.has_drift:
                PaymentCommandService(session, config).recompute_aggregate(
                    report.parent_type, report.parent_id, actor_id=SYSTEM_ACTOR
                )
                print("  aggregate recomputed")
    finally:
        session.close()

    if not reports:
        print("  No drift found.")
        return 0
    return 1


if __name__ == "__main__":
    sys.exit(main())
