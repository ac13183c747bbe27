"""
================================================================================
Report Engine - Evaluation Engine Unit Tests
================================================================================
Developed by Waqqas Hanafi
Calaveras County Health and Human Services Agency

Description:
    Unit tests for ReportEvaluator: parameter resolution, data-set results
    computed with pandas, result caching within one context, filter
    intersection, and failure propagation.

Test Coverage:
    - resolve_parameters() with bound, defaulted and missing parameters
    - Built-in cohort-indicator and row-per-subject evaluation
    - Cache reuse and invalidation
    - Schema filter, base cohort and input cohort intersection
    - EvaluationError wrapping
================================================================================
"""
import itertools

import pandas as pd
import pytest

from report_core.reports.context import Cohort, EvaluationContext
from report_core.reports.datasets import (
    CohortIndicatorDataSet,
    DEFAULT_EVALUATORS,
    DataFramePopulation,
    Indicator,
    RowPerSubjectDataSet,
)
from report_core.reports.evaluator import ReportEvaluator, resolve_parameters
from report_core.reports.exceptions import EvaluationError, MissingParameterError
from report_core.reports.materializer import parse_schema
from report_core.reports.schema import Parameter, ParameterType, ReportSchema


class CountingEvaluator:
    """Evaluator stub recording each call"""

    def __init__(self, result=None, error=None):
        self.calls = []
        self.result = result
        self.error = error

    def evaluate(self, definition, frame, parameters):
        self.calls.append((definition.name, sorted(frame["subject_id"].tolist()), dict(parameters)))
        if self.error is not None:
            raise self.error
        return self.result if self.result is not None else len(frame)


@pytest.fixture
def counting():
    return CountingEvaluator()


@pytest.fixture
def counting_engine(population, counting):
    return ReportEvaluator(population, {RowPerSubjectDataSet.type_id: counting})


@pytest.fixture
def sample_schema(sample_schema_xml):
    return parse_schema(sample_schema_xml)


def _roster_schema(*names, **kwargs):
    return ReportSchema(
        name="Roster",
        data_set_definitions=[RowPerSubjectDataSet(name=n, columns=("subject_id",)) for n in names],
        **kwargs
    )


class TestResolveParameters:
    """Test suite for resolve_parameters()"""

    def test_every_subset_of_bindings(self):
        """Missing names are exactly the unbound required parameters"""
        names = ["a", "b", "c"]
        schema = ReportSchema(name="p", parameters=[Parameter(n) for n in names])

        for size in range(len(names) + 1):
            for bound in itertools.combinations(names, size):
                context = EvaluationContext({n: 1 for n in bound})
                expected_missing = [n for n in names if n not in bound]
                if expected_missing:
                    with pytest.raises(MissingParameterError) as exc_info:
                        resolve_parameters(schema, context)
                    assert exc_info.value.missing == expected_missing
                else:
                    assert resolve_parameters(schema, context) == {"a": 1, "b": 1, "c": 1}

    def test_default_satisfies_required(self):
        schema = ReportSchema(name="p", parameters=[Parameter("a", default=5)])
        assert resolve_parameters(schema, EvaluationContext()) == {"a": 5}

    def test_bound_value_beats_default(self):
        schema = ReportSchema(name="p", parameters=[Parameter("a", default=5)])
        assert resolve_parameters(schema, EvaluationContext({"a": 9})) == {"a": 9}

    def test_optional_without_default_is_not_missing(self):
        schema = ReportSchema(name="p", parameters=[Parameter("a", required=False)])
        assert resolve_parameters(schema, EvaluationContext()) == {}

    def test_extra_values_pass_through(self):
        schema = ReportSchema(name="p")
        assert resolve_parameters(schema, EvaluationContext({"extra": 1})) == {"extra": 1}


class TestBuiltInDataSets:
    """Test suite for built-in data-set evaluation"""

    def test_sample_report(self, population, sample_schema):
        engine = ReportEvaluator(population)
        data = engine.evaluate(sample_schema, None, EvaluationContext({"min_age": 18}))

        assert list(data.data_sets) == ["counts", "roster"]
        assert data.get("counts") == {"adults": 4, "women": 3}
        roster = data.get("roster")
        assert isinstance(roster, pd.DataFrame)
        assert list(roster.columns) == ["subject_id", "age"]
        assert roster["subject_id"].tolist() == [2, 3, 4, 5]
        assert roster.index.tolist() == [0, 1, 2, 3]

    def test_parameter_override_of_default(self, population, sample_schema):
        engine = ReportEvaluator(population)
        data = engine.evaluate(sample_schema, None, EvaluationContext({"min_age": 40, "gender": "M"}))
        assert data.get("counts") == {"adults": 2, "women": 3}

    def test_result_keys_match_declared_data_sets(self, population, sample_schema):
        data = ReportEvaluator(population).evaluate(sample_schema, None, EvaluationContext({"min_age": 0}))
        assert set(data.data_sets) == set(sample_schema.data_set_names)
        assert data.report_schema is sample_schema

    def test_input_cohort_limits_subjects(self, population, sample_schema):
        data = ReportEvaluator(population).evaluate(
            sample_schema, Cohort([1, 2, 3]), EvaluationContext({"min_age": 18})
        )
        assert data.get("counts") == {"adults": 2, "women": 2}
        assert data.get("roster")["subject_id"].tolist() == [2, 3]

    def test_default_evaluators_cover_built_in_types(self):
        assert set(DEFAULT_EVALUATORS) == {"cohort-indicator", "row-per-subject"}


class TestMissingParameters:
    """Test suite for evaluation with unbound parameters"""

    def test_raises_before_any_evaluation(self, counting_engine, counting):
        schema = _roster_schema("a", parameters=[Parameter("x"), Parameter("y")])
        with pytest.raises(MissingParameterError) as exc_info:
            counting_engine.evaluate(schema, None, EvaluationContext({"y": 1}))
        assert exc_info.value.missing == ["x"]
        assert counting.calls == []


class TestCaching:
    """Test suite for result caching in the evaluation context"""

    def test_second_evaluation_uses_cache(self, counting_engine, counting):
        schema = _roster_schema("a", "b")
        context = EvaluationContext()

        first = counting_engine.evaluate(schema, None, context)
        second = counting_engine.evaluate(schema, None, context)

        assert len(counting.calls) == 2
        assert dict(first.data_sets) == dict(second.data_sets)

    def test_equal_parameterless_definitions_evaluated_once(self, population, counting):
        engine = ReportEvaluator(population, {RowPerSubjectDataSet.type_id: counting})
        first = ReportSchema(name="one", data_set_definitions=[RowPerSubjectDataSet(name="r", query="age > 1")])
        second = ReportSchema(name="two", data_set_definitions=[RowPerSubjectDataSet(name="r", query="age > 1")])
        context = EvaluationContext()

        engine.evaluate(first, None, context)
        engine.evaluate(second, None, context)

        assert len(counting.calls) == 1

    def test_shared_definition_with_different_defaults(self, population):
        """Each schema's own default decides the result, even within one context"""
        definition = CohortIndicatorDataSet(name="counts", indicators=(Indicator("adults", "age >= @min_age"),))
        young = ReportSchema(name="young", data_set_definitions=[definition],
                             parameters=[Parameter("min_age", type=ParameterType.INTEGER, default=18)])
        old = ReportSchema(name="old", data_set_definitions=[definition],
                           parameters=[Parameter("min_age", type=ParameterType.INTEGER, default=60)])
        engine = ReportEvaluator(population)
        context = EvaluationContext()

        first = engine.evaluate(young, None, context)
        second = engine.evaluate(old, None, context)

        assert first.get("counts") == {"adults": 4}
        assert second.get("counts") == {"adults": 1}
        assert dict(second.data_sets) == dict(engine.evaluate(old, None, EvaluationContext()).data_sets)

    def test_shared_definition_recomputed_per_parameter_value(self, counting_engine, counting):
        definition = RowPerSubjectDataSet(name="r", query="age >= @min_age")
        context = EvaluationContext()
        for default in (18, 60, 18):
            schema = ReportSchema(name=f"min {default}", data_set_definitions=[definition],
                                  parameters=[Parameter("min_age", default=default)])
            counting_engine.evaluate(schema, None, context)

        assert [call[2]["min_age"] for call in counting.calls] == [18, 60]

    def test_new_context_recomputes(self, counting_engine, counting):
        schema = _roster_schema("a")
        counting_engine.evaluate(schema, None, EvaluationContext())
        counting_engine.evaluate(schema, None, EvaluationContext())
        assert len(counting.calls) == 2

    def test_different_cohort_recomputes(self, counting_engine, counting):
        schema = _roster_schema("a")
        context = EvaluationContext()
        counting_engine.evaluate(schema, Cohort([1, 2]), context)
        counting_engine.evaluate(schema, Cohort([3]), context)
        counting_engine.evaluate(schema, Cohort([2, 1]), context)
        assert len(counting.calls) == 2

    def test_parameter_change_recomputes(self, counting_engine, counting):
        schema = _roster_schema("a")
        context = EvaluationContext({"p": 1})
        counting_engine.evaluate(schema, None, context)

        context.add_parameter_value("p", 2)
        counting_engine.evaluate(schema, None, context)

        assert len(counting.calls) == 2
        assert counting.calls[-1][2] == {"p": 2}


class TestFilters:
    """Test suite for the effective filter"""

    def test_schema_filter_and_input_cohort_intersect(self, counting_engine, counting):
        schema = _roster_schema("a", filter=Cohort([1, 2, 3]))
        counting_engine.evaluate(schema, Cohort([2, 3, 4]), EvaluationContext())
        assert counting.calls[0][1] == [2, 3]

    def test_base_cohort_also_applies(self, counting_engine, counting):
        schema = _roster_schema("a", filter=Cohort([1, 2, 3]))
        context = EvaluationContext(base_cohort=Cohort([3, 4]))
        counting_engine.evaluate(schema, None, context)
        assert counting.calls[0][1] == [3]

    def test_no_filters_means_every_subject(self, counting_engine, counting):
        counting_engine.evaluate(_roster_schema("a"), None, EvaluationContext())
        assert counting.calls[0][1] == [1, 2, 3, 4, 5, 6]

    def test_empty_intersection_evaluates_no_subjects(self, counting_engine, counting):
        schema = _roster_schema("a", filter=Cohort([1]))
        data = counting_engine.evaluate(schema, Cohort([2]), EvaluationContext())
        assert counting.calls[0][1] == []
        assert data.get("a") == 0


class TestFailures:
    """Test suite for failing data sets"""

    def test_evaluator_error_is_wrapped(self, population):
        cause = RuntimeError("boom")
        engine = ReportEvaluator(population, {RowPerSubjectDataSet.type_id: CountingEvaluator(error=cause)})

        with pytest.raises(EvaluationError) as exc_info:
            engine.evaluate(_roster_schema("bad"), None, EvaluationContext())

        assert exc_info.value.data_set_name == "bad"
        assert exc_info.value.cause is cause
        assert exc_info.value.__cause__ is cause

    def test_bad_query_is_wrapped(self, population):
        schema = ReportSchema(
            name="q",
            data_set_definitions=[RowPerSubjectDataSet(name="broken", query="no_such_column > 1")],
        )
        with pytest.raises(EvaluationError) as exc_info:
            ReportEvaluator(population).evaluate(schema, None, EvaluationContext())
        assert exc_info.value.data_set_name == "broken"

    def test_unregistered_type(self, population):
        engine = ReportEvaluator(population, {})
        with pytest.raises(EvaluationError) as exc_info:
            engine.evaluate(_roster_schema("a"), None, EvaluationContext())
        assert isinstance(exc_info.value.cause, LookupError)

    def test_failed_data_set_is_not_cached(self, population):
        failing = CountingEvaluator(error=RuntimeError("boom"))
        engine = ReportEvaluator(population, {RowPerSubjectDataSet.type_id: failing})
        context = EvaluationContext()

        with pytest.raises(EvaluationError):
            engine.evaluate(_roster_schema("a"), None, context)

        assert context.cache == {}


class TestTextSubjectIds:
    """Test suite for populations keyed by zero-padded text ids"""

    @pytest.fixture
    def record_population(self):
        return DataFramePopulation(pd.DataFrame({
            "subject_id": ["007", "042", "100"],
            "age": [30, 50, 70],
        }))

    def test_input_cohort_matches_padded_ids(self, record_population):
        data = ReportEvaluator(record_population).evaluate(
            _roster_schema("rows"), Cohort(["007", "042"]), EvaluationContext()
        )
        assert data.get("rows")["subject_id"].tolist() == ["007", "042"]

    def test_schema_filter_matches_padded_ids(self, record_population):
        schema = parse_schema(
            '<reportSchema><name>Records</name>'
            '<filter><subject id="100"/><subject id="042"/></filter>'
            '<dataSets><dataSet name="rows" type="row-per-subject"><column name="subject_id"/></dataSet></dataSets>'
            '</reportSchema>'
        )
        data = ReportEvaluator(record_population).evaluate(schema, None, EvaluationContext())
        assert data.get("rows")["subject_id"].tolist() == ["042", "100"]

    def test_int_cohort_matches_text_ids(self, record_population):
        assert record_population.frame_for(Cohort([7]))["subject_id"].tolist() == ["007"]

    def test_unknown_ids_match_nothing(self, record_population):
        assert record_population.frame_for(Cohort(["999", "abc"])).empty
