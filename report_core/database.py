"""
Report Store

Repositories persisting ReportSchema and ReportSchemaXml records. Identity
is assigned on first save and never changes afterwards. Two implementations
share one interface: an in-memory store for tests and embedded use, and a
SQLite store for the web application.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

import copy
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Type, Union

from .internal_schema import ensure_internal_schema
from .reports.materializer import parse_schema, serialize
from .reports.schema import DataSetDefinition, ReportSchema, ReportSchemaXml


class ReportRepository(ABC):
    """Abstract report store"""

    @abstractmethod
    def save_schema(self, schema: ReportSchema) -> ReportSchema:
        """Insert or update a schema; assigns report_schema_id on first save"""
        pass

    @abstractmethod
    def delete_schema(self, schema: ReportSchema) -> None:
        pass

    @abstractmethod
    def get_schema(self, report_schema_id: int) -> Optional[ReportSchema]:
        pass

    @abstractmethod
    def list_schemas(self) -> List[ReportSchema]:
        pass

    @abstractmethod
    def save_schema_xml(self, schema_xml: ReportSchemaXml) -> ReportSchemaXml:
        """Insert or update a schema XML; assigns report_schema_xml_id on first save"""
        pass

    @abstractmethod
    def delete_schema_xml(self, schema_xml: ReportSchemaXml) -> None:
        pass

    @abstractmethod
    def get_schema_xml(self, report_schema_xml_id: int) -> Optional[ReportSchemaXml]:
        pass

    @abstractmethod
    def list_schema_xmls(self) -> List[ReportSchemaXml]:
        pass


class InMemoryReportRepository(ReportRepository):
    """Report store kept in process memory; returns copies, never live records"""

    def __init__(self):
        self._schemas: Dict[int, ReportSchema] = {}
        self._schema_xmls: Dict[int, ReportSchemaXml] = {}
        self._next_schema_id = 1
        self._next_xml_id = 1
        self._lock = threading.Lock()

    def save_schema(self, schema: ReportSchema) -> ReportSchema:
        with self._lock:
            if schema.report_schema_id is None:
                schema.report_schema_id = self._next_schema_id
                self._next_schema_id += 1
            else:
                self._next_schema_id = max(self._next_schema_id, schema.report_schema_id + 1)
            self._schemas[schema.report_schema_id] = copy.deepcopy(schema)
        return schema

    def delete_schema(self, schema: ReportSchema) -> None:
        with self._lock:
            self._schemas.pop(schema.report_schema_id, None)
            for schema_xml in self._schema_xmls.values():
                if schema_xml.report_schema_id == schema.report_schema_id:
                    schema_xml.report_schema_id = None

    def get_schema(self, report_schema_id: int) -> Optional[ReportSchema]:
        with self._lock:
            schema = self._schemas.get(report_schema_id)
            return copy.deepcopy(schema) if schema is not None else None

    def list_schemas(self) -> List[ReportSchema]:
        with self._lock:
            return [copy.deepcopy(s) for _, s in sorted(self._schemas.items())]

    def save_schema_xml(self, schema_xml: ReportSchemaXml) -> ReportSchemaXml:
        now = datetime.now().isoformat()
        with self._lock:
            if schema_xml.report_schema_xml_id is None:
                schema_xml.report_schema_xml_id = self._next_xml_id
                self._next_xml_id += 1
                schema_xml.created_at = now
            else:
                self._next_xml_id = max(self._next_xml_id, schema_xml.report_schema_xml_id + 1)
            schema_xml.updated_at = now
            self._schema_xmls[schema_xml.report_schema_xml_id] = copy.copy(schema_xml)
        return schema_xml

    def delete_schema_xml(self, schema_xml: ReportSchemaXml) -> None:
        with self._lock:
            self._schema_xmls.pop(schema_xml.report_schema_xml_id, None)

    def get_schema_xml(self, report_schema_xml_id: int) -> Optional[ReportSchemaXml]:
        with self._lock:
            schema_xml = self._schema_xmls.get(report_schema_xml_id)
            return copy.copy(schema_xml) if schema_xml is not None else None

    def list_schema_xmls(self) -> List[ReportSchemaXml]:
        with self._lock:
            return [copy.copy(x) for _, x in sorted(self._schema_xmls.items())]


class SqliteReportRepository(ReportRepository):
    """Report store in SQLite; schemas are stored serialized"""

    def __init__(self,
                 db_path: Union[str, Path] = "data/database/reports.db",
                 timeout: float = 30.0,
                 data_set_types: Optional[Mapping[str, Type[DataSetDefinition]]] = None):
        self.db_path = Path(db_path)
        self.timeout = timeout
        self.data_set_types = data_set_types
        self.logger = logging.getLogger(self.__class__.__name__)
        ensure_internal_schema(self.db_path)

    @contextmanager
    def get_connection(self):
        """Connection committed on success, rolled back on error, always closed"""
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Report schemas
    # ------------------------------------------------------------------

    def _row_to_schema(self, row: sqlite3.Row) -> ReportSchema:
        schema = parse_schema(row['xml'], self.data_set_types)
        schema.report_schema_id = row['id']
        return schema

    def save_schema(self, schema: ReportSchema) -> ReportSchema:
        now = datetime.now().isoformat()
        with self.get_connection() as conn:
            if schema.report_schema_id is None:
                cursor = conn.execute(
                    """
                    INSERT INTO report_schema (name, description, xml, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (schema.name, schema.description, serialize(schema), now, now)
                )
                schema.report_schema_id = cursor.lastrowid
                # Store the id inside the serialized form as well
                conn.execute("UPDATE report_schema SET xml = ? WHERE id = ?",
                             (serialize(schema), schema.report_schema_id))
            else:
                conn.execute(
                    """
                    INSERT INTO report_schema (id, name, description, xml, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name,
                        description = excluded.description,
                        xml = excluded.xml,
                        updated_at = excluded.updated_at
                    """,
                    (schema.report_schema_id, schema.name, schema.description, serialize(schema), now, now)
                )
        self.logger.info(f"Saved report schema {schema.report_schema_id} '{schema.name}'")
        return schema

    def delete_schema(self, schema: ReportSchema) -> None:
        with self.get_connection() as conn:
            conn.execute("DELETE FROM report_schema WHERE id = ?", (schema.report_schema_id,))
        self.logger.info(f"Deleted report schema {schema.report_schema_id}")

    def get_schema(self, report_schema_id: int) -> Optional[ReportSchema]:
        with self.get_connection() as conn:
            row = conn.execute("SELECT * FROM report_schema WHERE id = ?", (report_schema_id,)).fetchone()
        return self._row_to_schema(row) if row else None

    def list_schemas(self) -> List[ReportSchema]:
        with self.get_connection() as conn:
            rows = conn.execute("SELECT * FROM report_schema ORDER BY id").fetchall()
        return [self._row_to_schema(row) for row in rows]

    # ------------------------------------------------------------------
    # Report schema XML
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_schema_xml(row: sqlite3.Row) -> ReportSchemaXml:
        return ReportSchemaXml(
            xml=row['xml'],
            name=row['name'] or "",
            description=row['description'] or "",
            report_schema_id=row['report_schema_id'],
            report_schema_xml_id=row['id'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    def save_schema_xml(self, schema_xml: ReportSchemaXml) -> ReportSchemaXml:
        now = datetime.now().isoformat()
        with self.get_connection() as conn:
            if schema_xml.report_schema_xml_id is None:
                cursor = conn.execute(
                    """
                    INSERT INTO report_schema_xml
                    (name, description, xml, report_schema_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (schema_xml.name, schema_xml.description, schema_xml.xml,
                     schema_xml.report_schema_id, now, now)
                )
                schema_xml.report_schema_xml_id = cursor.lastrowid
                schema_xml.created_at = now
            else:
                conn.execute(
                    """
                    INSERT INTO report_schema_xml
                    (id, name, description, xml, report_schema_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name,
                        description = excluded.description,
                        xml = excluded.xml,
                        report_schema_id = excluded.report_schema_id,
                        updated_at = excluded.updated_at
                    """,
                    (schema_xml.report_schema_xml_id, schema_xml.name, schema_xml.description,
                     schema_xml.xml, schema_xml.report_schema_id, schema_xml.created_at or now, now)
                )
            schema_xml.updated_at = now
        self.logger.info(f"Saved report schema XML {schema_xml.report_schema_xml_id}")
        return schema_xml

    def delete_schema_xml(self, schema_xml: ReportSchemaXml) -> None:
        with self.get_connection() as conn:
            conn.execute("DELETE FROM report_schema_xml WHERE id = ?", (schema_xml.report_schema_xml_id,))
        self.logger.info(f"Deleted report schema XML {schema_xml.report_schema_xml_id}")

    def get_schema_xml(self, report_schema_xml_id: int) -> Optional[ReportSchemaXml]:
        with self.get_connection() as conn:
            row = conn.execute("SELECT * FROM report_schema_xml WHERE id = ?", (report_schema_xml_id,)).fetchone()
        return self._row_to_schema_xml(row) if row else None

    def list_schema_xmls(self) -> List[ReportSchemaXml]:
        with self.get_connection() as conn:
            rows = conn.execute("SELECT * FROM report_schema_xml ORDER BY id").fetchall()
        return [self._row_to_schema_xml(row) for row in rows]
