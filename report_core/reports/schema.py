"""
Report Schema Model

In-memory report definitions: the live ReportSchema with its parameters and
data-set definitions, and the serialized ReportSchemaXml it is stored as.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from .context import Cohort


class ParameterType(Enum):
    """Supported parameter value types"""
    STRING = "string"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"


_TRUE_VALUES = {"true", "1", "yes", "y"}
_FALSE_VALUES = {"false", "0", "no", "n"}


@dataclass(frozen=True)
class Parameter:
    """A parameter a report schema declares"""
    name: str
    label: str = ""
    type: ParameterType = ParameterType.STRING
    required: bool = True
    default: Any = None

    def coerce(self, value: Any) -> Any:
        """
        Convert a raw value (usually text from a request) to the declared type.

        Raises:
            ValueError: If the value cannot be converted
        """
        if value is None:
            return None
        if self.type == ParameterType.STRING:
            return str(value)
        if self.type == ParameterType.INTEGER:
            if isinstance(value, bool):
                raise ValueError(f"Parameter '{self.name}' expects an integer, got {value!r}")
            return int(value)
        if self.type == ParameterType.DECIMAL:
            try:
                return Decimal(str(value))
            except InvalidOperation:
                raise ValueError(f"Parameter '{self.name}' expects a decimal, got {value!r}")
        if self.type == ParameterType.BOOLEAN:
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in _TRUE_VALUES:
                return True
            if text in _FALSE_VALUES:
                return False
            raise ValueError(f"Parameter '{self.name}' expects a boolean, got {value!r}")
        if self.type == ParameterType.DATE:
            if isinstance(value, datetime):
                return value.date()
            if isinstance(value, date):
                return value
            return date.fromisoformat(str(value).strip())
        raise ValueError(f"Unsupported parameter type: {self.type}")

    @property
    def has_default(self) -> bool:
        return self.default is not None


@dataclass(frozen=True)
class DataSetDefinition:
    """
    Base class for a named, evaluable unit of a report schema.

    Concrete definitions are frozen dataclasses, so two definitions with the
    same type and configuration are equal and hash alike. That value is the
    data set's identity for caching.
    """
    type_id: ClassVar[str] = ""

    name: str

    def identity(self) -> Tuple[str, "DataSetDefinition"]:
        return (self.type_id, self)

    def referenced_parameters(self) -> List[str]:
        """Names of parameters this definition refers to"""
        return []


@dataclass
class ReportSchema:
    """The live report definition"""
    name: str
    description: str = ""
    data_set_definitions: List[DataSetDefinition] = field(default_factory=list)
    parameters: List[Parameter] = field(default_factory=list)
    filter: Optional[Cohort] = None
    report_schema_id: Optional[int] = None

    def __post_init__(self):
        seen = set()
        for definition in self.data_set_definitions:
            if definition.name in seen:
                raise ValueError(f"Duplicate data set name in schema '{self.name}': {definition.name}")
            seen.add(definition.name)

    def get_parameter(self, name: str) -> Optional[Parameter]:
        for parameter in self.parameters:
            if parameter.name == name:
                return parameter
        return None

    @property
    def data_set_names(self) -> List[str]:
        return [d.name for d in self.data_set_definitions]

    def to_dict(self) -> Dict[str, Any]:
        """Summary used by API responses"""
        return {
            'report_schema_id': self.report_schema_id,
            'name': self.name,
            'description': self.description,
            'parameters': [
                {
                    'name': p.name,
                    'label': p.label or p.name,
                    'type': p.type.value,
                    'required': p.required,
                    'default': None if p.default is None else str(p.default),
                }
                for p in self.parameters
            ],
            'data_sets': [
                {'name': d.name, 'type': d.type_id}
                for d in self.data_set_definitions
            ],
            'filter_size': None if self.filter is None else len(self.filter),
        }


@dataclass
class ReportSchemaXml:
    """Serialized form of a ReportSchema, as stored"""
    xml: str
    name: str = ""
    description: str = ""
    report_schema_id: Optional[int] = None
    report_schema_xml_id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
