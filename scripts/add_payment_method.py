#!/usr/bin/env python3
"""
Add a payment-method label to the catalogue (additive migration).

Re-running with the same legs is a no-op; an existing code with different
legs is refused.

Usage:
    python3 scripts/add_payment_method.py cheque_espece --cash --check \\
        --label "Chèque et espèces"
    python3 scripts/add_payment_method.py traite --check --db-url sqlite:///payments.db
"""

import argparse
import sys
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from scripts.init_db import resolve_url  # noqa: E402

# Actor recorded for operator-run migrations
SYSTEM_ACTOR = UUID("00000000-0000-0000-0000-000000000001")


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Add a payment method label")
    p.add_argument("code", help="Label stored in mode_paiement, e.g. cheque_espece")
    p.add_argument("--label", default=None, help="Human readable name")
    p.add_argument("--cash", action="store_true", help="Method has a cash leg")
    p.add_argument("--check", action="store_true", help="Method has a check leg")
    p.add_argument("--config", default=None, help="Reconciliation YAML config")
    p.add_argument("--db-url", default=None, help="Database URL")
    return p.parse_args()


def main() -> int:
    args = _parse_args()
    if not (args.cash or args.check):
        print("ERROR: a payment method needs --cash, --check or both", file=sys.stderr)
        return 2

    from payment_kernel.config import load_config
    from payment_kernel.db.engine import get_session, init_engine_from_url
    from payment_kernel.exceptions import PaymentKernelError
    from payment_kernel.services.payment_commands import PaymentCommandService

    config = load_config(args.config)
    init_engine_from_url(resolve_url(args.db_url, config))

    session = get_session()
    try:
        added = PaymentCommandService(session, config).add_payment_method(
            args.code,
            args.label or args.code,
            has_cash_leg=args.cash,
            has_check_leg=args.check,
            actor_id=SYSTEM_ACTOR,
        )
    except PaymentKernelError as exc:
        print(f"ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1
    finally:
        session.close()

    print(f"  {args.code}: {'added' if added else 'already present'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
