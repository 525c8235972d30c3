import argparse
from pathlib import Path

from casino_wallet.database import SessionLocal
from casino_wallet.reconciliation import generate_balance_audit_csv


def reconcile(output_path: str = "reconciliation.csv") -> int:
    db = SessionLocal()
    try:
        csv_text, mismatch_count = generate_balance_audit_csv(db)
    finally:
        db.close()
    Path(output_path).write_text(csv_text, newline="")
    return 1 if mismatch_count else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Audit stored player balances against the ledger.")
    parser.add_argument("--output", default="reconciliation.csv", help="CSV file to write mismatches to")
    args = parser.parse_args()
    raise SystemExit(reconcile(args.output))


if __name__ == "__main__":
    main()
