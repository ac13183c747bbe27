"""
Report Models

Pydantic models for report API request/response validation and documentation.
Defines data structures for schema definitions, evaluation requests, rendering
modes, and macro tables.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

from typing import Optional, List, Dict, Any, Union
from pydantic import BaseModel, Field


class SchemaXmlRequest(BaseModel):
    """Create or replace a stored report schema definition"""
    xml: str = Field(..., description="Report schema XML; macros are expanded when it is loaded")
    name: Optional[str] = Field(None, description="Display name; taken from the schema when omitted")
    description: Optional[str] = Field(None, description="Display description")


class SchemaXmlResponse(BaseModel):
    """A stored report schema definition"""
    report_schema_xml_id: int
    name: str
    description: str = ""
    report_schema_id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    xml: Optional[str] = None


class EvaluateRequest(BaseModel):
    """Parameter values and an optional cohort for one evaluation"""
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Parameter name -> value")
    cohort: Optional[List[Union[int, str]]] = Field(None, description="Subject ids; all subjects when omitted")


class RenderRequest(EvaluateRequest):
    """Evaluation request plus the renderer to present it with"""
    renderer: Optional[str] = Field(None, description="Renderer id; the preferred mode when omitted")
    argument: Optional[str] = Field(None, description="Renderer argument, e.g. a data set name")


class DataSetSummary(BaseModel):
    """One evaluated data set"""
    name: str
    type: str
    row_count: int
    data: Any


class EvaluateResponse(BaseModel):
    """Result of evaluating a report schema"""
    report: str
    evaluation_date: str
    parameters: Dict[str, Any]
    data_sets: List[DataSetSummary]


class RenderingModeResponse(BaseModel):
    """A way to render a schema"""
    renderer: str
    label: str
    argument: Optional[str] = None
    sort_weight: int


class RendererResponse(BaseModel):
    """A registered renderer"""
    name: str
    label: str
    content_type: str
    sort_weight: int


class MacroTable(BaseModel):
    """The report XML macro table"""
    macros: Dict[str, Optional[str]] = Field(default_factory=dict)
