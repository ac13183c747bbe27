"""
Report Store Database Schema

Single source of truth for the report store schema (report_schema,
report_schema_xml and report_xml_macros). Ensures consistency across the
schema repositories and the macro store.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

import sqlite3
import logging
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {
    'report_schema': {'id', 'name', 'description', 'xml', 'created_at', 'updated_at'},
    'report_schema_xml': {'id', 'name', 'description', 'xml', 'report_schema_id', 'created_at', 'updated_at'},
    'report_xml_macros': {'name', 'value', 'updated_at', 'updated_by'},
}


def get_internal_schema_sql() -> str:
    """
    Get the complete report store schema SQL.
    This is the single source of truth for the report store structure.
    """
    return """
-- Saved report schemas, stored in their serialized form
CREATE TABLE IF NOT EXISTS report_schema (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT,
    xml TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Raw report schema definitions, expanded with macros before parsing
CREATE TABLE IF NOT EXISTS report_schema_xml (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT,
    description TEXT,
    xml TEXT NOT NULL,
    report_schema_id INTEGER,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (report_schema_id) REFERENCES report_schema(id) ON DELETE SET NULL
);

-- Macro table used when deserializing report schema XML
CREATE TABLE IF NOT EXISTS report_xml_macros (
    name TEXT PRIMARY KEY,
    value TEXT,
    updated_at TEXT NOT NULL,
    updated_by TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_report_schema_xml_schema_id ON report_schema_xml(report_schema_id);
"""


def ensure_internal_schema(db_path: Union[str, Path] = "data/database/reports.db"):
    """
    Ensure the report store has the correct schema.
    Safe to call multiple times.

    Args:
        db_path: Path to the report store database file
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with sqlite3.connect(db_path) as conn:
            conn.executescript(get_internal_schema_sql())
            conn.commit()
            logger.info(f"Report store schema verified/updated at {db_path}")
    except sqlite3.Error as e:
        logger.error(f"Error ensuring report store schema: {e}", exc_info=True)
        raise


def verify_internal_schema(db_path: Union[str, Path] = "data/database/reports.db") -> bool:
    """
    Verify the report store has the correct schema.

    Args:
        db_path: Path to the report store database file

    Returns:
        True if schema is correct, False otherwise
    """
    try:
        with sqlite3.connect(db_path) as conn:
            for table, required in REQUIRED_COLUMNS.items():
                cursor = conn.execute(f"PRAGMA table_info({table})")
                columns = {col[1] for col in cursor.fetchall()}
                if not required.issubset(columns):
                    logger.warning(f"{table} table missing columns: {required - columns}")
                    return False

            logger.info("Report store schema verified successfully")
            return True

    except sqlite3.Error as e:
        logger.error(f"Error verifying report store schema: {e}")
        return False
