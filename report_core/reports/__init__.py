"""
Reports Module

Report schema model, macro expansion, schema materialization, evaluation,
and renderers. The service facade and HTTP router live in
reports.service and reports.router.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

from .context import Cohort, EvaluationContext, ReportData, derive_cache_key
from .evaluator import ReportEvaluator
from .exceptions import (
    AuthorizationError,
    EvaluationError,
    MaterializationError,
    MissingParameterError,
    ReportError,
    UnknownRendererError,
)
from .macros import MacroExpander, expand_macros
from .materializer import materialize, parse_schema, serialize
from .renderers import RendererRegistry, RenderingMode, ReportRenderer
from .schema import Parameter, ParameterType, ReportSchema, ReportSchemaXml

__all__ = [
    "Cohort",
    "EvaluationContext",
    "ReportData",
    "derive_cache_key",
    "ReportEvaluator",
    "AuthorizationError",
    "EvaluationError",
    "MaterializationError",
    "MissingParameterError",
    "ReportError",
    "UnknownRendererError",
    "MacroExpander",
    "expand_macros",
    "materialize",
    "parse_schema",
    "serialize",
    "RendererRegistry",
    "RenderingMode",
    "ReportRenderer",
    "Parameter",
    "ParameterType",
    "ReportSchema",
    "ReportSchemaXml",
]
