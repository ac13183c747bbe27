"""
================================================================================
Report Engine - Reports API Endpoint Tests
================================================================================
Developed by Waqqas Hanafi
Calaveras County Health and Human Services Agency

Description:
    API tests for the /api/reports endpoints served by the FastAPI app,
    backed by an in-memory report service. Validates status codes, error
    translation, role checks from request headers, and response formats.

Test Coverage:
    - Schema definition CRUD endpoints
    - Evaluation and rendering endpoints
    - Renderer registry endpoints
    - Macro table endpoints
    - Authentication headers and role enforcement
================================================================================
"""
import pytest

ADMIN = {"X-Report-User": "alice", "X-Report-Role": "admin"}
OPERATOR = {"X-Report-User": "oscar", "X-Report-Role": "operator"}
VIEWER = {"X-Report-User": "vera", "X-Report-Role": "viewer"}


@pytest.fixture
def schema_id(client, sample_schema_xml):
    response = client.post("/api/reports/schemas", json={"xml": sample_schema_xml}, headers=ADMIN)
    assert response.status_code == 201
    return response.json()["report_schema_xml_id"]


class TestHealth:
    """Test /api/health endpoint"""

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestAuthentication:
    """Test identity and role headers"""

    def test_missing_user_header(self, client):
        assert client.get("/api/reports/schemas").status_code == 401

    def test_unknown_role(self, client):
        response = client.get("/api/reports/schemas", headers={"X-Report-User": "x", "X-Report-Role": "root"})
        assert response.status_code == 401

    def test_role_defaults_to_viewer(self, client):
        response = client.get("/api/reports/schemas", headers={"X-Report-User": "x"})
        assert response.status_code == 200

    def test_new_user_is_forbidden(self, client):
        response = client.get("/api/reports/schemas", headers={"X-Report-User": "x", "X-Report-Role": "new_user"})
        assert response.status_code == 403


class TestSchemaEndpoints:
    """Test /api/reports/schemas endpoints"""

    def test_create_takes_name_and_description_from_schema(self, client, sample_schema_xml):
        response = client.post("/api/reports/schemas", json={"xml": sample_schema_xml}, headers=ADMIN)

        assert response.status_code == 201
        body = response.json()
        assert body["report_schema_xml_id"] == 1
        assert body["name"] == "Adult Summary"
        assert body["description"] == "Counts for Calaveras"
        assert body["xml"] is None

    def test_create_with_explicit_name(self, client, sample_schema_xml):
        response = client.post("/api/reports/schemas",
                               json={"xml": sample_schema_xml, "name": "Adults", "description": "Mine"},
                               headers=ADMIN)
        assert response.json()["name"] == "Adults"
        assert response.json()["description"] == "Mine"

    def test_create_rejects_invalid_xml(self, client):
        response = client.post("/api/reports/schemas", json={"xml": "<reportSchema>"}, headers=ADMIN)
        assert response.status_code == 400
        assert client.get("/api/reports/schemas", headers=ADMIN).json() == []

    def test_create_requires_manage(self, client, sample_schema_xml):
        response = client.post("/api/reports/schemas", json={"xml": sample_schema_xml}, headers=OPERATOR)
        assert response.status_code == 403

    def test_list(self, client, schema_id):
        response = client.get("/api/reports/schemas", headers=VIEWER)
        assert [s["report_schema_xml_id"] for s in response.json()] == [schema_id]

    def test_get(self, client, schema_id, sample_schema_xml):
        response = client.get(f"/api/reports/schemas/{schema_id}", headers=VIEWER)

        assert response.status_code == 200
        body = response.json()
        assert body["definition"]["xml"] == sample_schema_xml
        assert body["schema"]["name"] == "Adult Summary"
        assert [d["name"] for d in body["schema"]["data_sets"]] == ["counts", "roster"]
        assert body["schema"]["parameters"][1]["default"] == "F"

    def test_get_missing(self, client):
        assert client.get("/api/reports/schemas/99", headers=VIEWER).status_code == 404

    def test_update(self, client, schema_id):
        xml = "<reportSchema><name>Renamed</name><dataSets/></reportSchema>"
        response = client.put(f"/api/reports/schemas/{schema_id}", json={"xml": xml}, headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["name"] == "Renamed"
        assert response.json()["report_schema_xml_id"] == schema_id

    def test_update_missing(self, client, sample_schema_xml):
        response = client.put("/api/reports/schemas/99", json={"xml": sample_schema_xml}, headers=ADMIN)
        assert response.status_code == 404

    def test_delete(self, client, schema_id):
        assert client.delete(f"/api/reports/schemas/{schema_id}", headers=ADMIN).status_code == 204
        assert client.get(f"/api/reports/schemas/{schema_id}", headers=ADMIN).status_code == 404

    def test_rendering_modes(self, client, schema_id):
        response = client.get(f"/api/reports/schemas/{schema_id}/rendering-modes", headers=VIEWER)

        modes = response.json()
        assert [(m["renderer"], m["argument"]) for m in modes] == [
            ("csv", "counts"), ("csv", "roster"),
            ("tsv", "counts"), ("tsv", "roster"),
            ("json", None),
            ("text", None),
        ]
        assert modes[0]["sort_weight"] == 10


class TestEvaluateEndpoint:
    """Test /api/reports/schemas/{id}/evaluate endpoint"""

    def test_evaluate(self, client, schema_id):
        response = client.post(f"/api/reports/schemas/{schema_id}/evaluate",
                               json={"parameters": {"min_age": "18"}}, headers=OPERATOR)

        assert response.status_code == 200
        body = response.json()
        assert body["report"] == "Adult Summary"
        assert body["parameters"] == {"min_age": "18"}
        counts, roster = body["data_sets"]
        assert counts["data"] == {"adults": 4, "women": 3}
        assert roster["row_count"] == 4
        assert roster["data"][0] == {"subject_id": 2, "age": 22}

    def test_evaluate_with_cohort(self, client, schema_id):
        response = client.post(f"/api/reports/schemas/{schema_id}/evaluate",
                               json={"parameters": {"min_age": 18}, "cohort": ["1", 2, 3]},
                               headers=OPERATOR)
        assert response.json()["data_sets"][0]["data"] == {"adults": 2, "women": 2}

    def test_missing_parameter(self, client, schema_id):
        response = client.post(f"/api/reports/schemas/{schema_id}/evaluate",
                               json={"parameters": {}}, headers=OPERATOR)
        assert response.status_code == 422
        assert response.json()["detail"]["missing"] == ["min_age"]

    def test_invalid_parameter_value(self, client, schema_id):
        response = client.post(f"/api/reports/schemas/{schema_id}/evaluate",
                               json={"parameters": {"min_age": "old"}}, headers=OPERATOR)
        assert response.status_code == 422

    def test_viewer_cannot_evaluate(self, client, schema_id):
        response = client.post(f"/api/reports/schemas/{schema_id}/evaluate",
                               json={"parameters": {"min_age": 18}}, headers=VIEWER)
        assert response.status_code == 403

    def test_failing_data_set(self, client):
        xml = ("<reportSchema><name>Broken</name><dataSets>"
               "<dataSet name='bad' type='row-per-subject' query='no_such_column > 1'/>"
               "</dataSets></reportSchema>")
        created = client.post("/api/reports/schemas", json={"xml": xml}, headers=ADMIN).json()

        response = client.post(f"/api/reports/schemas/{created['report_schema_xml_id']}/evaluate",
                               json={}, headers=OPERATOR)

        assert response.status_code == 500
        assert response.json()["detail"]["data_set"] == "bad"


class TestRenderEndpoint:
    """Test /api/reports/schemas/{id}/render endpoint"""

    def test_render_preferred_mode(self, client, schema_id):
        response = client.post(f"/api/reports/schemas/{schema_id}/render",
                               json={"parameters": {"min_age": 18}}, headers=OPERATOR)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.text.splitlines() == ["indicator,value", "adults,4", "women,3"]
        assert 'filename="adult_summary_counts.csv"' in response.headers["content-disposition"]

    def test_render_named_renderer_and_argument(self, client, schema_id):
        response = client.post(f"/api/reports/schemas/{schema_id}/render",
                               json={"parameters": {"min_age": 60}, "renderer": "tsv", "argument": "roster"},
                               headers=OPERATOR)
        assert response.text.splitlines() == ["subject_id\tage", "5\t67"]

    def test_render_json(self, client, schema_id):
        response = client.post(f"/api/reports/schemas/{schema_id}/render",
                               json={"parameters": {"min_age": 18}, "renderer": "json"},
                               headers=OPERATOR)
        assert response.headers["content-type"].startswith("application/json")
        assert response.json()["data_sets"]["counts"]["adults"] == 4

    def test_render_unregistered_renderer(self, client, schema_id):
        response = client.post(f"/api/reports/schemas/{schema_id}/render",
                               json={"parameters": {"min_age": 18}, "renderer": "pdf"},
                               headers=OPERATOR)
        assert response.status_code == 404

    def test_render_unknown_argument(self, client, schema_id):
        response = client.post(f"/api/reports/schemas/{schema_id}/render",
                               json={"parameters": {"min_age": 18}, "renderer": "csv", "argument": "nope"},
                               headers=OPERATOR)
        assert response.status_code == 404


class TestRendererEndpoints:
    """Test /api/reports/renderers endpoints"""

    def test_list(self, client):
        response = client.get("/api/reports/renderers", headers=VIEWER)
        assert [r["name"] for r in response.json()] == ["csv", "tsv", "json", "text"]

    def test_remove_and_register(self, client, schema_id):
        assert client.delete("/api/reports/renderers/csv", headers=ADMIN).status_code == 204
        modes = client.get(f"/api/reports/schemas/{schema_id}/rendering-modes", headers=VIEWER).json()
        assert modes[0]["renderer"] == "tsv"

        response = client.post("/api/reports/renderers/csv", headers=ADMIN)
        assert response.status_code == 201
        assert response.json()["content_type"] == "text/csv"

    def test_register_unknown(self, client):
        assert client.post("/api/reports/renderers/pdf", headers=ADMIN).status_code == 404

    def test_remove_unknown(self, client):
        assert client.delete("/api/reports/renderers/pdf", headers=ADMIN).status_code == 404

    def test_remove_unknown_requires_manage(self, client):
        assert client.delete("/api/reports/renderers/pdf", headers=VIEWER).status_code == 403

    def test_requires_manage(self, client):
        assert client.delete("/api/reports/renderers/csv", headers=OPERATOR).status_code == 403
        assert len(client.get("/api/reports/renderers", headers=VIEWER).json()) == 4


class TestMacroEndpoints:
    """Test /api/reports/macros endpoints"""

    def test_get(self, client):
        response = client.get("/api/reports/macros", headers=VIEWER)
        assert response.json() == {"macros": {"COUNTY": "Calaveras"}}

    def test_replace(self, client, schema_id):
        response = client.put("/api/reports/macros", json={"macros": {"COUNTY": "Amador"}}, headers=ADMIN)
        assert response.json() == {"macros": {"COUNTY": "Amador"}}

        schema = client.get(f"/api/reports/schemas/{schema_id}", headers=VIEWER).json()["schema"]
        assert schema["description"] == "Counts for Amador"

    def test_replace_requires_manage(self, client):
        response = client.put("/api/reports/macros", json={"macros": {}}, headers=OPERATOR)
        assert response.status_code == 403
