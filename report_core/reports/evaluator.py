"""
Report Evaluator

Evaluates a ReportSchema against a population, an optional input cohort, and
an EvaluationContext. Data sets are evaluated in declared order, each result
cached in the context under a key derived from the data set and the
effective filter.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

import logging
import time
from typing import Any, Dict, List, Mapping, Optional

from .context import Cohort, EvaluationContext, ReportData, derive_cache_key
from .datasets import DEFAULT_EVALUATORS
from .exceptions import EvaluationError, MissingParameterError
from .schema import ReportSchema

logger = logging.getLogger(__name__)


def resolve_parameters(schema: ReportSchema, context: EvaluationContext) -> Dict[str, Any]:
    """
    Bind the schema's parameters from the context, falling back to defaults.

    Extra values the context carries are passed through unchanged.

    Raises:
        MissingParameterError: Naming every required parameter that is neither
            bound nor defaulted
    """
    values = dict(context.parameter_values)
    missing: List[str] = []
    for parameter in schema.parameters:
        if context.has_parameter(parameter.name):
            continue
        if parameter.has_default:
            values[parameter.name] = parameter.default
        elif parameter.required:
            missing.append(parameter.name)
    if missing:
        raise MissingParameterError(missing)
    return values


class ReportEvaluator:
    """Orchestrates data-set evaluation for a report schema"""

    def __init__(self, population, evaluators: Optional[Mapping[str, Any]] = None):
        """
        Args:
            population: Source of subject rows, see DataFramePopulation
            evaluators: Data-set type id -> evaluator; built-ins when omitted
        """
        self.population = population
        self.evaluators = dict(DEFAULT_EVALUATORS if evaluators is None else evaluators)

    def evaluate(self,
                 schema: ReportSchema,
                 cohort: Optional[Cohort],
                 context: EvaluationContext) -> ReportData:
        """
        Evaluate every data set of schema.

        Args:
            schema: The report definition; not modified
            cohort: Input cohort, None for all subjects
            context: Parameter bindings and result cache for this request

        Returns:
            ReportData with one entry per declared data set, in declared order

        Raises:
            MissingParameterError: Before anything is evaluated
            EvaluationError: When any data set fails; no partial result
        """
        parameters = resolve_parameters(schema, context)
        effective = Cohort.intersect(schema.filter, context.base_cohort, cohort)

        started = time.perf_counter()
        results: Dict[str, Any] = {}
        hits = 0
        for definition in schema.data_set_definitions:
            key = derive_cache_key(definition, effective, parameters)
            if context.is_cached(key):
                results[definition.name] = context.get_from_cache(key)
                hits += 1
                continue

            evaluator = self.evaluators.get(definition.type_id)
            if evaluator is None:
                raise EvaluationError(
                    definition.name,
                    LookupError(f"No evaluator registered for data set type '{definition.type_id}'")
                )
            try:
                frame = self.population.frame_for(effective)
                result = evaluator.evaluate(definition, frame, parameters)
            except Exception as e:
                raise EvaluationError(definition.name, e) from e

            context.add_to_cache(key, result)
            results[definition.name] = result

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"Evaluated report '{schema.name}': {len(results)} data set(s), "
            f"{hits} from cache, {elapsed_ms:.1f} ms"
        )
        return ReportData(report_schema=schema, evaluation_context=context, data_sets=results)
