"""
CSV export of the whole manuals table.

Rows are read by primary key in batches (ManualStore.iter_batches) so memory
stays flat no matter how large the catalog grows.
"""

import csv
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any

from .store import EXPORT_COLUMNS

logger = logging.getLogger("export")


def csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


async def export_csv(store, out_path: Path, batch_size: int = 1000) -> int:
    """Write every row to out_path with a header line. Returns the row count."""
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    total = 0
    with open(out_path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(EXPORT_COLUMNS)
        async for rows in store.iter_batches(batch_size):
            for row in rows:
                writer.writerow([csv_value(row.get(col)) for col in EXPORT_COLUMNS])
            total += len(rows)
            logger.info("exported %s rows", total)

    logger.info("wrote %s rows to %s", total, out_path)
    return total
