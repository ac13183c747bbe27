"""
================================================================================
Report Engine - Unified Test Configuration and Fixtures
================================================================================
Developed by Waqqas Hanafi
Calaveras County Health and Human Services Agency

Description:
    Shared pytest configuration and fixtures for all tests (unit, integration, API).
    Provides a sample population, a sample report schema definition, a fully
    wired in-memory report service, and a FastAPI test client bound to it.

Fixtures:
    - temp_dir: Temporary directory for test files
    - sample_population_data: Sample population DataFrame
    - population: DataFramePopulation over the sample data
    - sample_schema_xml: Report schema XML using parameters and a macro
    - report_service: ReportService over in-memory stores
    - client: FastAPI test client serving report_service

Features:
    - Automatic cleanup of temporary resources
    - Isolated test environments
    - Reusable test data

================================================================================
"""
import pytest
import pandas as pd
import tempfile
import shutil
import sys
from pathlib import Path

# Add project root to path for all tests
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from report_core.database import InMemoryReportRepository
from report_core.settings_manager import InMemoryMacroStore
from report_core.reports.datasets import DataFramePopulation
from report_core.reports.evaluator import ReportEvaluator
from report_core.reports.renderers import RendererRegistry
from report_core.reports.service import ReportService


ADMIN_HEADERS = {"X-Report-User": "alice", "X-Report-Role": "admin"}
OPERATOR_HEADERS = {"X-Report-User": "oscar", "X-Report-Role": "operator"}
VIEWER_HEADERS = {"X-Report-User": "vera", "X-Report-Role": "viewer"}

SAMPLE_SCHEMA_XML = """
<reportSchema>
    <name>Adult Summary</name>
    <description>Counts for $COUNTY</description>
    <parameters>
        <parameter name="min_age" type="integer" label="Minimum age"/>
        <parameter name="gender" type="string" required="false" default="F"/>
    </parameters>
    <dataSets>
        <dataSet name="counts" type="cohort-indicator">
            <indicator name="adults" query="age >= @min_age"/>
            <indicator name="women" query="gender == @gender"/>
        </dataSet>
        <dataSet name="roster" type="row-per-subject" query="age >= @min_age">
            <column name="subject_id"/>
            <column name="age"/>
        </dataSet>
    </dataSets>
</reportSchema>
"""


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests"""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def sample_population_data():
    """Sample population data for testing"""
    return pd.DataFrame({
        'subject_id': [1, 2, 3, 4, 5, 6],
        'age': [15, 22, 35, 41, 67, 17],
        'gender': ['F', 'M', 'F', 'M', 'F', 'M'],
        'county': ['Calaveras', 'Calaveras', 'Amador', 'Calaveras', 'Amador', 'Calaveras'],
    })


@pytest.fixture
def population(sample_population_data):
    """Population over the sample data"""
    return DataFramePopulation(sample_population_data)


@pytest.fixture
def sample_schema_xml():
    """Report schema XML with one required parameter, one defaulted parameter and a macro"""
    return SAMPLE_SCHEMA_XML


@pytest.fixture
def report_service(population):
    """Report service over in-memory stores and every built-in renderer"""
    return ReportService(
        InMemoryReportRepository(),
        InMemoryMacroStore({"COUNTY": "Calaveras"}),
        RendererRegistry.from_names(["csv", "tsv", "json", "text"]),
        ReportEvaluator(population),
        macro_prefix="$",
        macro_suffix="",
    )


@pytest.fixture
def client(report_service):
    """Create a FastAPI test client serving report_service"""
    from fastapi.testclient import TestClient
    from report_core.app import app, app_state

    app_state["report_service"] = report_service
    yield TestClient(app)
    app_state["report_service"] = None


@pytest.fixture
def project_root_path():
    """Return the project root path"""
    return project_root
