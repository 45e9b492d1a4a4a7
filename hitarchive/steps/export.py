"""CSV export of the whole archive in priority order."""

import csv
import os
from pathlib import Path
from typing import Any, Dict, Optional

from ..logger import get_logger

CSV_COLUMNS = (
    "external_id",
    "source",
    "author",
    "title",
    "popularity",
    "description",
    "url",
    "created_at",
    "relevance_score",
    "matched_category",
    "summary",
    "summary_localized",
    "scored_at",
)

_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def escape_cell(value: Any) -> str:
    """Render a value for CSV; strings that a spreadsheet would run as a formula get a ``'`` prefix."""
    if value is None:
        return ""
    if isinstance(value, float):
        return f"{value:.2f}"
    if not isinstance(value, str):
        return value.isoformat() if hasattr(value, "isoformat") else str(value)
    if value.startswith(_FORMULA_PREFIXES):
        return "'" + value
    return value


def export_csv(store, path: Path) -> int:
    """Write every record to ``path`` (replaced atomically). Returns the row count."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")

    count = 0
    with tmp.open("w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_COLUMNS)
        for record in store.iterate():
            writer.writerow([escape_cell(getattr(record, column)) for column in CSV_COLUMNS])
            count += 1
    os.replace(tmp, path)
    return count


def run(ctx, options=None, path: Optional[Path] = None) -> Dict[str, Any]:
    logger = get_logger()
    path = path or ctx.settings.pipeline.data_dir / "feed.csv"
    count = export_csv(ctx.store, path)
    logger.info(f"Exported {count} records to {path}")
    return {"exported": count, "path": str(path)}
