"""
Settings Manager

Loads and saves the report XML macro table. The table is one process-wide
setting: a save replaces it entirely, and every load returns the latest
saved table.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

import sqlite3
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from .internal_schema import ensure_internal_schema


class InMemoryMacroStore:
    """Macro table held in process memory"""

    def __init__(self, macros: Optional[Mapping[str, Optional[str]]] = None):
        self._macros: Dict[str, Optional[str]] = dict(macros or {})
        self._lock = threading.Lock()

    def load(self) -> Dict[str, Optional[str]]:
        with self._lock:
            return dict(self._macros)

    def save(self, macros: Mapping[str, Optional[str]], username: str = "system"):
        replacement = dict(macros)
        with self._lock:
            self._macros = replacement


class SqliteMacroStore:
    """Macro table stored in the report store database"""

    def __init__(self, db_path: Union[str, Path] = "data/database/reports.db", timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.timeout = timeout
        self.logger = logging.getLogger(self.__class__.__name__)
        ensure_internal_schema(self.db_path)

    def load(self) -> Dict[str, Optional[str]]:
        """Load the macro table"""
        with sqlite3.connect(self.db_path, timeout=self.timeout) as conn:
            cursor = conn.execute("SELECT name, value FROM report_xml_macros ORDER BY name")
            return {row[0]: row[1] for row in cursor.fetchall()}

    def save(self, macros: Mapping[str, Optional[str]], username: str = "system"):
        """Replace the macro table in one transaction"""
        now = datetime.now().isoformat()
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        try:
            with conn:
                conn.execute("DELETE FROM report_xml_macros")
                conn.executemany(
                    """
                    INSERT INTO report_xml_macros (name, value, updated_at, updated_by)
                    VALUES (?, ?, ?, ?)
                    """,
                    [(name, value, now, username) for name, value in macros.items()]
                )
        finally:
            conn.close()
        self.logger.info(f"Saved {len(macros)} report XML macro(s) (by {username})")
