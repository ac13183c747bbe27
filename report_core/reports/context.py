"""
Evaluation Context

Cohorts (population filters), the per-call evaluation context with its result
cache, and the immutable ReportData an evaluation produces.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

from dataclasses import dataclass, field
from datetime import date
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Hashable, Iterable, Iterator, Mapping, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from .schema import DataSetDefinition, ReportSchema


def normalize_subject_id(subject_id: Any) -> Any:
    """Subject ids are ints or text; numeric text is read as an int"""
    if isinstance(subject_id, str):
        text = subject_id.strip()
        if text.isdigit():
            return int(text)
        return text
    return subject_id


class Cohort:
    """An immutable set of subject ids limiting evaluation scope"""

    __slots__ = ('_members', 'name')

    def __init__(self, members: Iterable[Any] = (), name: str = ""):
        self._members: FrozenSet[Any] = frozenset(normalize_subject_id(m) for m in members)
        self.name = name

    @property
    def members(self) -> FrozenSet[Any]:
        return self._members

    @property
    def key(self) -> FrozenSet[Any]:
        """Hashable identity of the cohort; two cohorts with equal members share it"""
        return self._members

    def __len__(self) -> int:
        return len(self._members)

    def __iter__(self) -> Iterator[Any]:
        return iter(sorted(self._members, key=str))

    def __contains__(self, subject_id: Any) -> bool:
        return subject_id in self._members

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Cohort):
            return NotImplemented
        return self._members == other._members

    def __hash__(self) -> int:
        return hash(self._members)

    def __repr__(self) -> str:
        return f"Cohort(name={self.name!r}, size={len(self._members)})"

    @staticmethod
    def intersect(*cohorts: Optional["Cohort"]) -> Optional["Cohort"]:
        """
        Logical intersection of cohorts.

        A None cohort means "all subjects" and places no restriction.
        Returns None only when every input is None.
        """
        present = [c for c in cohorts if c is not None]
        if not present:
            return None
        if len(present) == 1:
            return present[0]
        members = present[0].members
        for cohort in present[1:]:
            members = members & cohort.members
        name = " AND ".join(c.name for c in present if c.name)
        return Cohort(members, name=name)


CacheKey = Tuple[Hashable, Optional[FrozenSet[Any]], Tuple[Tuple[str, Hashable], ...]]


def _hashable(value: Any) -> Hashable:
    if isinstance(value, (list, tuple)):
        return tuple(_hashable(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_hashable(v) for v in value)
    if isinstance(value, Mapping):
        return tuple(sorted((str(k), _hashable(v)) for k, v in value.items()))
    return value


def derive_cache_key(definition: "DataSetDefinition",
                     cohort: Optional[Cohort],
                     parameters: Optional[Mapping[str, Any]] = None) -> CacheKey:
    """
    Cache key for a data set evaluated against an effective filter.

    Includes the resolved value of every parameter the definition refers to,
    so definitions shared by schemas with different defaults never collide.
    """
    parameters = parameters or {}
    bound = tuple(
        (name, _hashable(parameters.get(name)))
        for name in sorted(set(definition.referenced_parameters()))
    )
    return (definition.identity(), None if cohort is None else cohort.key, bound)


class EvaluationContext:
    """
    Parameter bindings and the result cache for one evaluation request.

    The cache may be shared by several evaluate() calls (for example the
    parts of a composite report) but never across contexts. It is not safe
    for concurrent use.
    """

    def __init__(self,
                 parameter_values: Optional[Mapping[str, Any]] = None,
                 base_cohort: Optional[Cohort] = None,
                 evaluation_date: Optional[date] = None):
        self._parameter_values: Dict[str, Any] = dict(parameter_values or {})
        self.base_cohort = base_cohort
        self.evaluation_date = evaluation_date or date.today()
        self.cache: Dict[CacheKey, Any] = {}

    @property
    def parameter_values(self) -> Mapping[str, Any]:
        return MappingProxyType(self._parameter_values)

    def add_parameter_value(self, name: str, value: Any):
        """Bind a parameter; cached results computed under old bindings are dropped"""
        if name not in self._parameter_values or self._parameter_values[name] != value:
            self.cache.clear()
        self._parameter_values[name] = value

    def has_parameter(self, name: str) -> bool:
        return name in self._parameter_values

    def get_parameter_value(self, name: str, default: Any = None) -> Any:
        return self._parameter_values.get(name, default)

    def is_cached(self, key: CacheKey) -> bool:
        return key in self.cache

    def get_from_cache(self, key: CacheKey) -> Any:
        return self.cache[key]

    def add_to_cache(self, key: CacheKey, value: Any):
        self.cache[key] = value

    def clear_cache(self):
        self.cache.clear()


@dataclass(frozen=True)
class ReportData:
    """The result of evaluating a report schema"""
    report_schema: "ReportSchema"
    evaluation_context: EvaluationContext
    data_sets: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'data_sets', MappingProxyType(dict(self.data_sets)))

    def get(self, data_set_name: str) -> Any:
        return self.data_sets[data_set_name]
