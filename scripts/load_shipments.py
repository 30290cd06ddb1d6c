#!/usr/bin/env python3
"""Load shipment records from JSONL into the PostgreSQL ``shipments`` table.

Usage:
    python scripts/load_shipments.py data/shipments.jsonl
    python scripts/load_shipments.py data/shipments.jsonl --batch-size 5000

Each line is one shipment in the API's camelCase shape. Rows whose id already
exists are skipped, so the load can be re-run after a partial failure.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tradescope.db.models import ShipmentRecord
from tradescope.db.session import init_db, session_scope
from tradescope.search.index import shipment_to_record
from tradescope.search.models import Shipment


def load(path: Path, batch_size: int) -> int:
    inserted = 0
    batch = []
    with path.open("r", encoding="utf-8") as handle:
        for line_no, line in enumerate(handle, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                batch.append(Shipment.from_dict(json.loads(line)))
            except (ValueError, KeyError) as exc:
                print(f"Skipping line {line_no}: {exc}")
                continue
            if len(batch) >= batch_size:
                inserted += _flush(batch)
                batch = []
    if batch:
        inserted += _flush(batch)
    return inserted


def _flush(batch) -> int:
    with session_scope() as session:
        ids = [shipment.id for shipment in batch]
        existing = {
            row[0] for row in session.query(ShipmentRecord.id).filter(ShipmentRecord.id.in_(ids)).all()
        }
        fresh = [shipment_to_record(s) for s in batch if s.id not in existing]
        session.add_all(fresh)
    print(f"  inserted {len(fresh)} / {len(batch)}")
    return len(fresh)


def main() -> None:
    parser = argparse.ArgumentParser(description="Load shipments JSONL into PostgreSQL")
    parser.add_argument("path", type=Path, help="JSONL file of shipments")
    parser.add_argument("--batch-size", type=int, default=1000)
    args = parser.parse_args()

    init_db()
    total = load(args.path, max(1, args.batch_size))
    print(f"Loaded {total} shipments from {args.path}")


if __name__ == "__main__":
    main()
