"""
Report Service

Facade over the report subsystem: evaluating schemas, storing schema
definitions, managing renderers and the XML macro table. Every operation
checks its privilege with the injected authorization gate before doing
anything else.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

import copy
import logging
from typing import Dict, List, Mapping, Optional, TextIO, Type

from ..auth import AllowAll, AuthorizationGate, Privilege
from ..config import config as default_config
from .context import Cohort, EvaluationContext, ReportData
from .evaluator import ReportEvaluator
from .macros import MacroExpander, macro_syntax
from .materializer import materialize
from .renderers import RenderingMode, RendererRegistry, ReportRenderer, resolve_renderer_class
from .schema import ReportSchema, ReportSchemaXml

logger = logging.getLogger(__name__)


class ReportService:
    """Report operations composed from explicitly constructed collaborators"""

    def __init__(self,
                 repository,
                 macro_store,
                 renderer_registry: RendererRegistry,
                 evaluator: ReportEvaluator,
                 authorizer: Optional[AuthorizationGate] = None,
                 macro_prefix: Optional[str] = None,
                 macro_suffix: Optional[str] = None,
                 data_set_types=None):
        """
        Args:
            repository: Report store, see ReportRepository
            macro_store: Macro table store with load() and save()
            renderer_registry: Registered renderers
            evaluator: Evaluation engine bound to a population
            authorizer: Gate with check(privilege); AllowAll when omitted
            macro_prefix: Default macro prefix; from config when omitted
            macro_suffix: Default macro suffix; from config when omitted
            data_set_types: Data-set type table for materialization
        """
        self.repository = repository
        self.macro_store = macro_store
        self.renderer_registry = renderer_registry
        self.evaluator = evaluator
        self.authorizer = authorizer or AllowAll()
        self.data_set_types = data_set_types
        self.macro_expander = MacroExpander(
            macro_store,
            default_config.reporting.macro_prefix if macro_prefix is None else macro_prefix,
            default_config.reporting.macro_suffix if macro_suffix is None else macro_suffix,
        )

    def with_authorizer(self, authorizer: AuthorizationGate) -> "ReportService":
        """Same collaborators, different caller"""
        service = copy.copy(self)
        service.authorizer = authorizer
        return service

    def _require(self, privilege: Privilege):
        self.authorizer.check(privilege)

    # ========================================================================
    # EVALUATION
    # ========================================================================

    def evaluate(self,
                 schema: ReportSchema,
                 cohort: Optional[Cohort],
                 context: EvaluationContext) -> ReportData:
        """
        Evaluate schema for the subjects in cohort (all subjects when None).

        Raises:
            AuthorizationError: Caller cannot run reports
            MissingParameterError: Required parameters unbound
            EvaluationError: A data set failed
        """
        self._require(Privilege.RUN_REPORTS)
        return self.evaluator.evaluate(schema, cohort, context)

    # ========================================================================
    # REPORT SCHEMAS
    # ========================================================================

    def get_report_schemas(self) -> List[ReportSchema]:
        self._require(Privilege.VIEW_REPORTS)
        return self.repository.list_schemas()

    def get_report_schema(self, report_schema_id: int) -> Optional[ReportSchema]:
        self._require(Privilege.VIEW_REPORTS)
        return self.repository.get_schema(report_schema_id)

    def get_report_schema_from_xml(self, schema_xml: ReportSchemaXml) -> ReportSchema:
        """
        Expand the current macros into a stored definition and parse it.

        Raises:
            MaterializationError: If the expanded definition is invalid
        """
        self._require(Privilege.VIEW_REPORTS)
        macros = self.macro_expander.current_macros()
        prefix, suffix = macro_syntax(macros, self.macro_expander.default_prefix,
                                      self.macro_expander.default_suffix)
        return materialize(schema_xml, macros, prefix, suffix, self.data_set_types)

    def save_report_schema(self, schema: ReportSchema) -> ReportSchema:
        self._require(Privilege.MANAGE_REPORTS)
        return self.repository.save_schema(schema)

    def delete_report_schema(self, schema: ReportSchema):
        self._require(Privilege.MANAGE_REPORTS)
        self.repository.delete_schema(schema)

    # ========================================================================
    # REPORT SCHEMA XML
    # ========================================================================

    def get_report_schema_xml(self, report_schema_xml_id: int) -> Optional[ReportSchemaXml]:
        self._require(Privilege.VIEW_REPORTS)
        return self.repository.get_schema_xml(report_schema_xml_id)

    def get_report_schema_xmls(self) -> List[ReportSchemaXml]:
        self._require(Privilege.VIEW_REPORTS)
        return self.repository.list_schema_xmls()

    def save_report_schema_xml(self, schema_xml: ReportSchemaXml) -> ReportSchemaXml:
        self._require(Privilege.MANAGE_REPORTS)
        return self.repository.save_schema_xml(schema_xml)

    def delete_report_schema_xml(self, schema_xml: ReportSchemaXml):
        self._require(Privilege.MANAGE_REPORTS)
        self.repository.delete_schema_xml(schema_xml)

    # ========================================================================
    # MACROS
    # ========================================================================

    def get_report_xml_macros(self) -> Dict[str, Optional[str]]:
        self._require(Privilege.VIEW_REPORTS)
        return self.macro_expander.current_macros()

    def save_report_xml_macros(self, macros: Mapping[str, Optional[str]], username: str = "system"):
        self._require(Privilege.MANAGE_REPORTS)
        self.macro_store.save(dict(macros), username)

    def apply_report_xml_macros(self, text: str) -> str:
        self._require(Privilege.VIEW_REPORTS)
        return self.macro_expander.expand(text)

    # ========================================================================
    # RENDERERS
    # ========================================================================

    def get_report_renderers(self) -> List[ReportRenderer]:
        self._require(Privilege.VIEW_REPORTS)
        return self.renderer_registry.all()

    def get_rendering_modes(self, schema: ReportSchema) -> List[RenderingMode]:
        """Modes the schema supports, preferred first"""
        self._require(Privilege.VIEW_REPORTS)
        return self.renderer_registry.rendering_modes(schema)

    def get_report_renderer(self, renderer_class: Type[ReportRenderer]) -> Optional[ReportRenderer]:
        self._require(Privilege.VIEW_REPORTS)
        return self.renderer_registry.get(renderer_class)

    def get_report_renderer_by_name(self, name: str) -> Optional[ReportRenderer]:
        self._require(Privilege.VIEW_REPORTS)
        return self.renderer_registry.get_by_name(name)

    def get_renderers(self) -> Dict[Type[ReportRenderer], ReportRenderer]:
        self._require(Privilege.VIEW_REPORTS)
        return self.renderer_registry.renderers

    def set_renderers(self, renderers: Mapping[Type[ReportRenderer], ReportRenderer]):
        self._require(Privilege.MANAGE_REPORTS)
        self.renderer_registry.set_renderers(renderers)

    def register_renderer(self, renderer_class: Type[ReportRenderer], renderer: ReportRenderer):
        self._require(Privilege.MANAGE_REPORTS)
        self.renderer_registry.register(renderer_class, renderer)

    def register_renderer_by_name(self, name: str) -> ReportRenderer:
        """
        Raises:
            UnknownRendererError: If name does not resolve to a renderer
        """
        self._require(Privilege.MANAGE_REPORTS)
        return self.renderer_registry.register_by_name(name)

    def remove_renderer(self, renderer_class: Type[ReportRenderer]):
        self._require(Privilege.MANAGE_REPORTS)
        self.renderer_registry.remove(renderer_class)

    def remove_renderer_by_name(self, name: str):
        """
        Raises:
            UnknownRendererError: If name does not resolve to a renderer class
        """
        self._require(Privilege.MANAGE_REPORTS)
        self.renderer_registry.remove(resolve_renderer_class(name, self.renderer_registry.factories))

    def render(self, data: ReportData, mode: RenderingMode, target: TextIO):
        """Write data to target with the mode's renderer"""
        self._require(Privilege.RUN_REPORTS)
        mode.renderer.render(data, mode.argument, target)
