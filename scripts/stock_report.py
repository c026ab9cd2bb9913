#!/usr/bin/env python3
"""
Replay the movement ledger and print current stock per lot and slot.

Usage:
    python3 scripts/stock_report.py --product P-100 --ledger ledger.json
    python3 scripts/stock_report.py --product P-100 --db-url sqlite:///stock.db
    python3 scripts/stock_report.py --product P-100 --ledger ledger.json --history
    python3 scripts/stock_report.py --product P-100 --ledger ledger.json --json

The ledger file is a JSON array of records in the MovementRecord wire shape
(see ``MovementRecord.to_dict``).
"""

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

W = 96


def banner(title: str) -> None:
    print()
    print("=" * W)
    print(f"  {title}")
    print("=" * W)


def load_ledger_file(path: Path) -> list:
    from stock_kernel.domain.movement import MovementRecord

    with open(path) as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON array of records")
    return [MovementRecord.from_dict(item) for item in data]


def load_ledger_db(db_url: str, product_id: str) -> list:
    from stock_kernel.db.engine import get_session_factory, init_engine_from_url
    from stock_kernel.services.movement_store import SqlMovementStore

    init_engine_from_url(db_url, echo=False)
    return SqlMovementStore(get_session_factory()).list_movements(product_id)


def render_stock(groups: list, product_id: str, view: str) -> None:
    banner(f"STOCK  {product_id}  ({view} view)")
    if not groups:
        print("  No stock.")
        return
    print(
        f"  {'Lot':<34} {'Location':<12} {'Slot':>6} {'Entrée':>8} "
        f"{'Sortie':>8} {'Dispo':>8}  {'Qualité':<13} {'Expiration':<10}"
    )
    print(f"  {'-' * 34} {'-' * 12} {'-' * 6} {'-' * 8} {'-' * 8} {'-' * 8}  {'-' * 13} {'-' * 10}")
    for g in groups:
        slot = "-" if g.sub_location_id is None else str(g.sub_location_id)
        expiration = g.expiration_date.isoformat() if g.expiration_date else "-"
        print(
            f"  {g.lot_id:<34} {g.location_id:<12} {slot:>6} {g.entree:>8} "
            f"{g.sortie:>8} {g.available:>8}  {g.quality_status.value:<13} {expiration:<10}"
        )
    print()
    print(f"  Total available: {sum(g.available for g in groups)}")


def render_history(records: list, product_id: str) -> None:
    banner(f"HISTORY  {product_id}")
    if not records:
        print("  No movements.")
        return
    for r in records:
        slot = "-" if r.sub_location_id is None else str(r.sub_location_id)
        print(
            f"  {r.created_at.isoformat():<32} {r.direction.value:<8} {r.quantity:>8}  "
            f"{r.lot_id:<34} {r.location_id}/{slot}"
        )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Replay the stock ledger")
    parser.add_argument("--product", required=True, help="Product id to report on")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--ledger", type=Path, help="JSON ledger file")
    source.add_argument("--db-url", help="SQLAlchemy database URL")
    parser.add_argument(
        "--view",
        choices=["physical", "reporting"],
        default="physical",
        help="physical includes transfer legs, reporting excludes them",
    )
    parser.add_argument("--history", action="store_true", help="Print plain movement history")
    parser.add_argument("--json", action="store_true", help="Emit JSON instead of a table")
    args = parser.parse_args(argv)

    logging.disable(logging.CRITICAL)
    try:
        return _report(args)
    finally:
        logging.disable(logging.NOTSET)


def _report(args: argparse.Namespace) -> int:
    from stock_engines.aggregation import aggregate, movement_history
    from stock_kernel.domain.values import StockView
    from stock_kernel.exceptions import StockLedgerError

    try:
        if args.ledger is not None:
            records = load_ledger_file(args.ledger)
        else:
            records = load_ledger_db(args.db_url, args.product)
        groups = list(aggregate(records, args.product, StockView(args.view)).values())
    except (OSError, ValueError, KeyError, StockLedgerError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    if args.json:
        if args.history:
            payload = [r.to_dict() for r in movement_history(records, args.product)]
        else:
            payload = [
                {
                    "lot_id": g.lot_id,
                    "location_id": g.location_id,
                    "sub_location_id": g.sub_location_id,
                    "entree": g.entree,
                    "sortie": g.sortie,
                    "available": g.available,
                    "quality_status": g.quality_status.value,
                    "fabrication_date": g.fabrication_date,
                    "expiration_date": g.expiration_date,
                }
                for g in groups
            ]
        print(json.dumps(payload, indent=2, default=str))
        return 0

    if args.history:
        render_history(movement_history(records, args.product), args.product)
    else:
        render_stock(groups, args.product, args.view)
    return 0


if __name__ == "__main__":
    sys.exit(main())
