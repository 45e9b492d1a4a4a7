"""
One-shot import of summarized GitHub records from an external SQLite file.

Reads the ``posts`` table of another archive database (IMPORT_DB_PATH)
read-only and upserts the rows that already carry a summary.
"""

from pathlib import Path
from typing import Any, Dict, List, Mapping

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from ..logger import get_logger
from ..normalize import parse_timestamp
from ..retry import StorageError

IMPORT_QUERY = text(
    """
    SELECT * FROM posts
    WHERE source = 'github'
      AND summary IS NOT NULL
    ORDER BY relevance_score DESC, stars DESC
    """
)

# external column -> record field
COLUMN_MAP = {
    "id": "external_id",
    "source": "source",
    "username": "author",
    "name": "title",
    "stars": "popularity",
    "description": "description",
    "url": "url",
    "created_at": "created_at",
    "relevance_score": "relevance_score",
    "matched_interest": "matched_category",
    "summary": "summary",
    "scored_at": "scored_at",
}

BATCH_SIZE = 500


def row_to_record(row: Mapping[str, Any]) -> Dict[str, Any]:
    record = {field: row[column] for column, field in COLUMN_MAP.items() if column in row}
    record["external_id"] = str(record["external_id"])
    for field in ("created_at", "scored_at"):
        if field in record:
            record[field] = parse_timestamp(record[field])
    return record


def read_import_rows(db_path: Path) -> List[Dict[str, Any]]:
    engine = create_engine(f"sqlite:///file:{Path(db_path)}?mode=ro&uri=true")
    try:
        with engine.connect() as conn:
            return [row_to_record(row._mapping) for row in conn.execute(IMPORT_QUERY)]
    except SQLAlchemyError as e:
        raise StorageError(f"Could not read import database {db_path}: {e}") from e
    finally:
        engine.dispose()


def run(ctx, options=None) -> Dict[str, Any]:
    logger = get_logger()
    path = ctx.settings.import_db_path
    if path is None or not Path(path).exists():
        logger.info("IMPORT_DB_PATH not set or file not found, skipping import")
        return {"imported": 0}

    records = read_import_rows(path)
    logger.info(f"Found {len(records)} records with summary in {path}")

    imported = 0
    for start in range(0, len(records), BATCH_SIZE):
        imported += ctx.store.upsert_batch(records[start:start + BATCH_SIZE])

    logger.info(f"Imported {imported} records")
    return {"imported": imported}
