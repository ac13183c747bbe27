"""
Report Data Sets

Built-in data-set definitions, the evaluators that compute them with pandas,
and the population they are evaluated against. Data-set types are looked up
by their type id: DATA_SET_TYPES for parsing definitions, DEFAULT_EVALUATORS
for evaluating them.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

import logging
import re
import sqlite3
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Type

import pandas as pd

from .context import Cohort, normalize_subject_id
from .schema import DataSetDefinition

logger = logging.getLogger(__name__)

SUBJECT_ID_COLUMN = "subject_id"

_PARAMETER_REFERENCE = re.compile(r"@(\w+)")


def _parameters_in(expression: Optional[str]) -> List[str]:
    if not expression:
        return []
    return _PARAMETER_REFERENCE.findall(expression)


# ============================================================================
# POPULATION
# ============================================================================

class DataFramePopulation:
    """All subjects available to reports, one row per subject"""

    def __init__(self, frame: pd.DataFrame, id_column: str = SUBJECT_ID_COLUMN):
        if id_column not in frame.columns:
            raise ValueError(f"Population frame has no '{id_column}' column")
        self.frame = frame
        self.id_column = id_column

    @classmethod
    def from_csv(cls, path: Path, id_column: str = SUBJECT_ID_COLUMN) -> "DataFramePopulation":
        frame = pd.read_csv(path)
        logger.info(f"Loaded population of {len(frame)} subject(s) from {path}")
        return cls(frame, id_column)

    @classmethod
    def from_sqlite(cls, db_path: Path, table: str, id_column: str = SUBJECT_ID_COLUMN) -> "DataFramePopulation":
        if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", table):
            raise ValueError(f"Invalid table name: {table}")
        with sqlite3.connect(str(db_path)) as conn:
            frame = pd.read_sql_query(f"SELECT * FROM {table}", conn)
        logger.info(f"Loaded population of {len(frame)} subject(s) from {db_path}:{table}")
        return cls(frame, id_column)

    def subject_ids(self) -> List[Any]:
        return self.frame[self.id_column].tolist()

    def frame_for(self, cohort: Optional[Cohort]) -> pd.DataFrame:
        """Rows for the subjects in cohort; every row when cohort is None"""
        if cohort is None:
            return self.frame
        # Both sides normalized alike: "007" and 7 name the same subject
        ids = self.frame[self.id_column].map(normalize_subject_id)
        return self.frame[ids.isin(list(cohort.members))]


# ============================================================================
# DEFINITIONS
# ============================================================================

@dataclass(frozen=True)
class Indicator:
    """A named count of the subjects matching a query"""
    name: str
    query: str = ""


@dataclass(frozen=True)
class CohortIndicatorDataSet(DataSetDefinition):
    """Counts subjects per indicator"""
    type_id: ClassVar[str] = "cohort-indicator"

    indicators: Tuple[Indicator, ...] = ()

    def referenced_parameters(self) -> List[str]:
        names: List[str] = []
        for indicator in self.indicators:
            names.extend(_parameters_in(indicator.query))
        return names

    @classmethod
    def from_xml(cls, element: ET.Element) -> "CohortIndicatorDataSet":
        indicators = []
        for child in element.findall("indicator"):
            name = child.get("name")
            if not name:
                raise ValueError("indicator without a name")
            indicators.append(Indicator(name=name, query=child.get("query", "")))
        if not indicators:
            raise ValueError("cohort-indicator data set declares no indicators")
        return cls(name=element.get("name"), indicators=tuple(indicators))

    def to_xml(self, element: ET.Element):
        for indicator in self.indicators:
            child = ET.SubElement(element, "indicator", name=indicator.name)
            if indicator.query:
                child.set("query", indicator.query)


@dataclass(frozen=True)
class RowPerSubjectDataSet(DataSetDefinition):
    """Lists selected columns for each subject matching an optional query"""
    type_id: ClassVar[str] = "row-per-subject"

    columns: Tuple[str, ...] = ()
    query: str = ""

    def referenced_parameters(self) -> List[str]:
        return _parameters_in(self.query)

    @classmethod
    def from_xml(cls, element: ET.Element) -> "RowPerSubjectDataSet":
        columns = []
        for child in element.findall("column"):
            name = child.get("name")
            if not name:
                raise ValueError("column without a name")
            columns.append(name)
        return cls(name=element.get("name"), columns=tuple(columns), query=element.get("query", ""))

    def to_xml(self, element: ET.Element):
        if self.query:
            element.set("query", self.query)
        for column in self.columns:
            ET.SubElement(element, "column", name=column)


DATA_SET_TYPES: Dict[str, Type[DataSetDefinition]] = {
    CohortIndicatorDataSet.type_id: CohortIndicatorDataSet,
    RowPerSubjectDataSet.type_id: RowPerSubjectDataSet,
}


# ============================================================================
# EVALUATORS
# ============================================================================

def _apply_query(frame: pd.DataFrame, query: str, parameters: Mapping[str, Any]) -> pd.DataFrame:
    if not query:
        return frame
    return frame.query(query, local_dict=dict(parameters), engine="python")


class CohortIndicatorEvaluator:
    """Evaluates cohort-indicator data sets to {indicator name: subject count}"""

    def evaluate(self,
                 definition: CohortIndicatorDataSet,
                 frame: pd.DataFrame,
                 parameters: Mapping[str, Any]) -> Dict[str, int]:
        return {
            indicator.name: int(len(_apply_query(frame, indicator.query, parameters)))
            for indicator in definition.indicators
        }


class RowPerSubjectEvaluator:
    """Evaluates row-per-subject data sets to a DataFrame"""

    def evaluate(self,
                 definition: RowPerSubjectDataSet,
                 frame: pd.DataFrame,
                 parameters: Mapping[str, Any]) -> pd.DataFrame:
        rows = _apply_query(frame, definition.query, parameters)
        if definition.columns:
            rows = rows[list(definition.columns)]
        return rows.reset_index(drop=True)


DEFAULT_EVALUATORS: Dict[str, Any] = {
    CohortIndicatorDataSet.type_id: CohortIndicatorEvaluator(),
    RowPerSubjectDataSet.type_id: RowPerSubjectEvaluator(),
}
