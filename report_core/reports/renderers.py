"""
Report Renderers

Pluggable renderers that turn evaluated ReportData into output formats, and
the registry that holds them. Each renderer says whether it can render a
schema and which rendering modes it offers; the registry merges those modes
into one preference order.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

import io
import json
import logging
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, TextIO, Type

import pandas as pd

from .context import ReportData
from .exceptions import UnknownRendererError
from .schema import ReportSchema

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderingMode:
    """One way of presenting a schema's output"""
    renderer: "ReportRenderer"
    label: str
    argument: Optional[str] = None
    sort_weight: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'renderer': self.renderer.name,
            'label': self.label,
            'argument': self.argument,
            'sort_weight': self.sort_weight,
        }


def data_set_frame(result: Any) -> pd.DataFrame:
    """Tabular view of a data-set result"""
    if isinstance(result, pd.DataFrame):
        return result
    if isinstance(result, Mapping):
        return pd.DataFrame(list(result.items()), columns=["indicator", "value"])
    if isinstance(result, (list, tuple)):
        return pd.DataFrame(result)
    return pd.DataFrame([{"value": result}])


def _slug(text: str) -> str:
    return re.sub(r"[^A-Za-z0-9]+", "_", text).strip("_").lower() or "report"


# ============================================================================
# RENDERERS
# ============================================================================

class ReportRenderer(ABC):
    """Abstract base class for report renderers"""

    name: str = ""
    label: str = ""
    content_type: str = "text/plain"
    file_extension: str = "txt"
    default_sort_weight: int = 100

    def __init__(self, sort_weight: Optional[int] = None):
        self.sort_weight = self.default_sort_weight if sort_weight is None else sort_weight

    @abstractmethod
    def can_render(self, schema: ReportSchema) -> bool:
        """Whether this renderer can present output of schema"""
        pass

    @abstractmethod
    def rendering_modes(self, schema: ReportSchema) -> List[RenderingMode]:
        """Modes this renderer offers for schema"""
        pass

    @abstractmethod
    def render(self, data: ReportData, argument: Optional[str], target: TextIO) -> None:
        """Write data to target"""
        pass

    def render_to_string(self, data: ReportData, argument: Optional[str] = None) -> str:
        buffer = io.StringIO()
        self.render(data, argument, buffer)
        return buffer.getvalue()

    def filename(self, data: ReportData, argument: Optional[str] = None) -> str:
        parts = [data.report_schema.name]
        if argument:
            parts.append(argument)
        return f"{_slug('_'.join(parts))}.{self.file_extension}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(sort_weight={self.sort_weight})"


class DelimitedReportRenderer(ReportRenderer):
    """Exports one data set as delimited text, one mode per data set"""

    delimiter = ","

    def can_render(self, schema: ReportSchema) -> bool:
        return bool(schema.data_set_definitions)

    def rendering_modes(self, schema: ReportSchema) -> List[RenderingMode]:
        return [
            RenderingMode(self, f"{self.label} ({definition.name})", definition.name, self.sort_weight)
            for definition in schema.data_set_definitions
        ]

    def render(self, data: ReportData, argument: Optional[str], target: TextIO) -> None:
        if argument is None:
            if not data.report_schema.data_set_names:
                raise ValueError("Report has no data sets to render")
            argument = data.report_schema.data_set_names[0]
        if argument not in data.data_sets:
            raise ValueError(f"Report has no data set named '{argument}'")
        data_set_frame(data.data_sets[argument]).to_csv(target, sep=self.delimiter, index=False)


class CsvReportRenderer(DelimitedReportRenderer):
    name = "csv"
    label = "CSV"
    content_type = "text/csv"
    file_extension = "csv"
    default_sort_weight = 10


class TsvReportRenderer(DelimitedReportRenderer):
    name = "tsv"
    label = "Tab-delimited"
    content_type = "text/tab-separated-values"
    file_extension = "tsv"
    delimiter = "\t"
    default_sort_weight = 20


class JsonReportRenderer(ReportRenderer):
    """All data sets as one JSON document"""

    name = "json"
    label = "JSON"
    content_type = "application/json"
    file_extension = "json"
    default_sort_weight = 30

    def can_render(self, schema: ReportSchema) -> bool:
        return True

    def rendering_modes(self, schema: ReportSchema) -> List[RenderingMode]:
        return [RenderingMode(self, self.label, None, self.sort_weight)]

    def render(self, data: ReportData, argument: Optional[str], target: TextIO) -> None:
        context = data.evaluation_context
        document = {
            'report': data.report_schema.name,
            'evaluation_date': context.evaluation_date.isoformat(),
            'parameters': dict(context.parameter_values),
            'data_sets': {
                name: (result.to_dict(orient="records") if isinstance(result, pd.DataFrame) else result)
                for name, result in data.data_sets.items()
            },
        }
        json.dump(document, target, indent=2, default=str)


class TextReportRenderer(ReportRenderer):
    """Plain fixed-width text of all data sets"""

    name = "text"
    label = "Text"
    content_type = "text/plain"
    file_extension = "txt"
    default_sort_weight = 50

    def can_render(self, schema: ReportSchema) -> bool:
        return True

    def rendering_modes(self, schema: ReportSchema) -> List[RenderingMode]:
        return [RenderingMode(self, self.label, None, self.sort_weight)]

    def render(self, data: ReportData, argument: Optional[str], target: TextIO) -> None:
        schema = data.report_schema
        target.write(f"{schema.name}\n{'=' * len(schema.name)}\n")
        if schema.description:
            target.write(f"{schema.description}\n")
        for name, result in data.data_sets.items():
            frame = data_set_frame(result)
            target.write(f"\n{name}\n{'-' * len(name)}\n")
            if frame.empty:
                target.write("(no rows)\n")
            else:
                target.write(frame.to_string(index=False))
                target.write("\n")


# Stable renderer ids -> constructible renderer classes
RENDERER_FACTORIES: Dict[str, Type[ReportRenderer]] = {
    CsvReportRenderer.name: CsvReportRenderer,
    TsvReportRenderer.name: TsvReportRenderer,
    JsonReportRenderer.name: JsonReportRenderer,
    TextReportRenderer.name: TextReportRenderer,
}


def resolve_renderer_class(name: str,
                           factories: Optional[Mapping[str, Type[ReportRenderer]]] = None) -> Type[ReportRenderer]:
    """
    Resolve a renderer id to its class.

    Raises:
        UnknownRendererError: If no factory is registered under name
    """
    table = RENDERER_FACTORIES if factories is None else factories
    renderer_class = table.get(name)
    if renderer_class is None:
        raise UnknownRendererError(name)
    return renderer_class


# ============================================================================
# REGISTRY
# ============================================================================

class RendererRegistry:
    """
    Registered renderers keyed by renderer class.

    Mutations and reads are serialized by one lock; reads work on a snapshot
    taken under it. A re-registered class keeps its original position.
    """

    def __init__(self, factories: Optional[Mapping[str, Type[ReportRenderer]]] = None):
        self.factories = dict(RENDERER_FACTORIES if factories is None else factories)
        self._renderers: Dict[Type[ReportRenderer], ReportRenderer] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_names(cls, names: Iterable[str],
                   factories: Optional[Mapping[str, Type[ReportRenderer]]] = None) -> "RendererRegistry":
        """Registry with one default-constructed renderer per configured id"""
        registry = cls(factories)
        for name in names:
            registry.register_by_name(name)
        return registry

    def register(self, renderer_class: Type[ReportRenderer], renderer: ReportRenderer):
        with self._lock:
            replaced = renderer_class in self._renderers
            self._renderers[renderer_class] = renderer
        logger.info(f"{'Replaced' if replaced else 'Registered'} report renderer {renderer_class.__name__}")

    def register_by_name(self, name: str) -> ReportRenderer:
        """
        Construct the renderer registered under name and register it.

        Raises:
            UnknownRendererError: If name is unknown or the renderer cannot be
                constructed; the registry is left unchanged
        """
        renderer_class = resolve_renderer_class(name, self.factories)
        try:
            renderer = renderer_class()
        except Exception as e:
            raise UnknownRendererError(name, f"construction failed: {e}") from e
        self.register(renderer_class, renderer)
        return renderer

    def remove(self, renderer_class: Type[ReportRenderer]):
        with self._lock:
            removed = self._renderers.pop(renderer_class, None)
        if removed is not None:
            logger.info(f"Removed report renderer {renderer_class.__name__}")

    def get(self, renderer_class: Type[ReportRenderer]) -> Optional[ReportRenderer]:
        with self._lock:
            return self._renderers.get(renderer_class)

    def get_by_name(self, name: str) -> Optional[ReportRenderer]:
        try:
            renderer_class = resolve_renderer_class(name, self.factories)
        except UnknownRendererError:
            return None
        return self.get(renderer_class)

    def all(self) -> List[ReportRenderer]:
        with self._lock:
            return list(self._renderers.values())

    @property
    def renderers(self) -> Dict[Type[ReportRenderer], ReportRenderer]:
        """Snapshot of the class -> renderer map"""
        with self._lock:
            return dict(self._renderers)

    def set_renderers(self, renderers: Mapping[Type[ReportRenderer], ReportRenderer]):
        """Replace every registration at once"""
        replacement = dict(renderers)
        with self._lock:
            self._renderers = replacement
        logger.info(f"Renderer registry replaced with {len(replacement)} renderer(s)")

    def rendering_modes(self, schema: ReportSchema) -> List[RenderingMode]:
        """
        Modes of every capable renderer, most preferred first.

        Sorted by sort weight; ties keep registration order, then the order
        each renderer listed its own modes.
        """
        modes: List[RenderingMode] = []
        for renderer in self.all():
            if renderer.can_render(schema):
                modes.extend(renderer.rendering_modes(schema))
        return sorted(modes, key=lambda mode: mode.sort_weight)

    def __len__(self) -> int:
        with self._lock:
            return len(self._renderers)

    def __contains__(self, renderer_class: Type[ReportRenderer]) -> bool:
        with self._lock:
            return renderer_class in self._renderers
