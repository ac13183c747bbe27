"""
Report Router (API Layer)

FastAPI router exposing stored report schemas, evaluation, rendering, the
renderer registry, and the XML macro table. Report errors are translated
into HTTP status codes here and nowhere else.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

import io
import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, List

import pandas as pd
from fastapi import APIRouter, Depends, HTTPException, Response

from ..auth import SessionAuthorizer, UserSession, require_session
from .context import Cohort, EvaluationContext, ReportData
from .exceptions import (
    AuthorizationError,
    EvaluationError,
    MaterializationError,
    MissingParameterError,
    ReportError,
    UnknownRendererError,
)
from .models import (
    DataSetSummary,
    EvaluateRequest,
    EvaluateResponse,
    MacroTable,
    RendererResponse,
    RenderingModeResponse,
    RenderRequest,
    SchemaXmlRequest,
    SchemaXmlResponse,
)
from .schema import ReportSchema, ReportSchemaXml
from .service import ReportService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/reports", tags=["reports"])


# Dependency to get report service
def get_report_service(session: UserSession = Depends(require_session)) -> ReportService:
    """Report service of the running app, acting for the caller"""
    from ..app import app_state
    return app_state["report_service"].with_authorizer(SessionAuthorizer(session))


@contextmanager
def report_errors():
    """Translate report errors into HTTP errors"""
    try:
        yield
    except AuthorizationError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except MissingParameterError as e:
        raise HTTPException(status_code=422, detail={"message": str(e), "missing": e.missing})
    except MaterializationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UnknownRendererError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except EvaluationError as e:
        logger.error(f"Report evaluation failed: {e}")
        raise HTTPException(status_code=500, detail={"message": str(e), "data_set": e.data_set_name})
    except ReportError as e:
        raise HTTPException(status_code=500, detail=str(e))


def _xml_response(schema_xml: ReportSchemaXml, include_xml: bool = False) -> SchemaXmlResponse:
    return SchemaXmlResponse(
        report_schema_xml_id=schema_xml.report_schema_xml_id,
        name=schema_xml.name,
        description=schema_xml.description,
        report_schema_id=schema_xml.report_schema_id,
        created_at=schema_xml.created_at,
        updated_at=schema_xml.updated_at,
        xml=schema_xml.xml if include_xml else None,
    )


def _load_schema(service: ReportService, report_schema_xml_id: int) -> ReportSchema:
    schema_xml = service.get_report_schema_xml(report_schema_xml_id)
    if schema_xml is None:
        raise HTTPException(status_code=404, detail=f"Report schema {report_schema_xml_id} not found")
    return service.get_report_schema_from_xml(schema_xml)


def _build_context(schema: ReportSchema, request: EvaluateRequest) -> EvaluationContext:
    """Coerce request values to the declared parameter types"""
    values: Dict[str, Any] = {}
    for name, raw in request.parameters.items():
        parameter = schema.get_parameter(name)
        if parameter is None:
            values[name] = raw
            continue
        try:
            values[name] = parameter.coerce(raw)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=f"Invalid value for parameter '{name}': {e}")
    return EvaluationContext(values)


def _evaluate(service: ReportService, schema: ReportSchema, request: EvaluateRequest) -> ReportData:
    context = _build_context(schema, request)
    cohort = Cohort(request.cohort, name="Request cohort") if request.cohort is not None else None
    return service.evaluate(schema, cohort, context)


def _summarize(data: ReportData) -> EvaluateResponse:
    summaries: List[DataSetSummary] = []
    for definition in data.report_schema.data_set_definitions:
        result = data.data_sets[definition.name]
        if isinstance(result, pd.DataFrame):
            row_count = len(result)
            payload = json.loads(result.to_json(orient="records", date_format="iso"))
        else:
            row_count = len(result) if hasattr(result, "__len__") else 1
            payload = result
        summaries.append(DataSetSummary(name=definition.name, type=definition.type_id,
                                        row_count=row_count, data=payload))
    context = data.evaluation_context
    return EvaluateResponse(
        report=data.report_schema.name,
        evaluation_date=context.evaluation_date.isoformat(),
        parameters={k: str(v) for k, v in context.parameter_values.items()},
        data_sets=summaries,
    )


# ============================================================================
# SCHEMA ENDPOINTS
# ============================================================================

@router.get("/schemas", response_model=List[SchemaXmlResponse])
async def list_schemas(service: ReportService = Depends(get_report_service)):
    """List stored report schema definitions"""
    with report_errors():
        return [_xml_response(x) for x in service.get_report_schema_xmls()]


@router.get("/schemas/{report_schema_xml_id}")
async def get_schema(report_schema_xml_id: int, service: ReportService = Depends(get_report_service)):
    """Get a stored definition and the schema it materializes to"""
    with report_errors():
        schema_xml = service.get_report_schema_xml(report_schema_xml_id)
        if schema_xml is None:
            raise HTTPException(status_code=404, detail=f"Report schema {report_schema_xml_id} not found")
        schema = service.get_report_schema_from_xml(schema_xml)
        return {
            "definition": _xml_response(schema_xml, include_xml=True).model_dump(),
            "schema": schema.to_dict(),
        }


@router.post("/schemas", response_model=SchemaXmlResponse, status_code=201)
async def create_schema(request: SchemaXmlRequest, service: ReportService = Depends(get_report_service)):
    """Store a new report schema definition after checking it materializes"""
    with report_errors():
        schema_xml = ReportSchemaXml(xml=request.xml, description=request.description or "")
        schema = service.get_report_schema_from_xml(schema_xml)
        schema_xml.name = request.name or schema.name
        if not request.description:
            schema_xml.description = schema.description
        return _xml_response(service.save_report_schema_xml(schema_xml))


@router.put("/schemas/{report_schema_xml_id}", response_model=SchemaXmlResponse)
async def update_schema(report_schema_xml_id: int,
                        request: SchemaXmlRequest,
                        service: ReportService = Depends(get_report_service)):
    """Replace a stored report schema definition"""
    with report_errors():
        existing = service.get_report_schema_xml(report_schema_xml_id)
        if existing is None:
            raise HTTPException(status_code=404, detail=f"Report schema {report_schema_xml_id} not found")
        candidate = ReportSchemaXml(
            xml=request.xml,
            description=request.description or existing.description,
            report_schema_id=existing.report_schema_id,
            report_schema_xml_id=existing.report_schema_xml_id,
            created_at=existing.created_at,
        )
        schema = service.get_report_schema_from_xml(candidate)
        candidate.name = request.name or schema.name
        return _xml_response(service.save_report_schema_xml(candidate))


@router.delete("/schemas/{report_schema_xml_id}", status_code=204)
async def delete_schema(report_schema_xml_id: int, service: ReportService = Depends(get_report_service)):
    """Delete a stored report schema definition"""
    with report_errors():
        existing = service.get_report_schema_xml(report_schema_xml_id)
        if existing is None:
            raise HTTPException(status_code=404, detail=f"Report schema {report_schema_xml_id} not found")
        service.delete_report_schema_xml(existing)
    return Response(status_code=204)


@router.get("/schemas/{report_schema_xml_id}/rendering-modes", response_model=List[RenderingModeResponse])
async def get_rendering_modes(report_schema_xml_id: int, service: ReportService = Depends(get_report_service)):
    """Rendering modes for a schema, preferred first"""
    with report_errors():
        schema = _load_schema(service, report_schema_xml_id)
        return [RenderingModeResponse(**mode.to_dict()) for mode in service.get_rendering_modes(schema)]


# ============================================================================
# EVALUATION & RENDERING ENDPOINTS
# ============================================================================

@router.post("/schemas/{report_schema_xml_id}/evaluate", response_model=EvaluateResponse)
async def evaluate_schema(report_schema_xml_id: int,
                          request: EvaluateRequest,
                          service: ReportService = Depends(get_report_service)):
    """Evaluate a stored schema and return its data sets"""
    with report_errors():
        schema = _load_schema(service, report_schema_xml_id)
        return _summarize(_evaluate(service, schema, request))


@router.post("/schemas/{report_schema_xml_id}/render")
async def render_schema(report_schema_xml_id: int,
                        request: RenderRequest,
                        service: ReportService = Depends(get_report_service)):
    """Evaluate a stored schema and render it"""
    with report_errors():
        schema = _load_schema(service, report_schema_xml_id)
        modes = service.get_rendering_modes(schema)
        if request.renderer:
            modes = [m for m in modes if m.renderer.name == request.renderer]
            if not modes:
                raise UnknownRendererError(request.renderer, "not registered for this report")
        if request.argument is not None:
            modes = [m for m in modes if m.argument == request.argument]
        if not modes:
            raise HTTPException(status_code=404, detail="No rendering mode matches the request")
        mode = modes[0]

        data = _evaluate(service, schema, request)
        buffer = io.StringIO()
        service.render(data, mode, buffer)
        filename = mode.renderer.filename(data, mode.argument)
        return Response(
            content=buffer.getvalue(),
            media_type=mode.renderer.content_type,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )


# ============================================================================
# RENDERER & MACRO ENDPOINTS
# ============================================================================

@router.get("/renderers", response_model=List[RendererResponse])
async def list_renderers(service: ReportService = Depends(get_report_service)):
    """Registered renderers"""
    with report_errors():
        return [
            RendererResponse(name=r.name, label=r.label, content_type=r.content_type, sort_weight=r.sort_weight)
            for r in service.get_report_renderers()
        ]


@router.post("/renderers/{name}", response_model=RendererResponse, status_code=201)
async def register_renderer(name: str, service: ReportService = Depends(get_report_service)):
    """Register the renderer known by id"""
    with report_errors():
        r = service.register_renderer_by_name(name)
        return RendererResponse(name=r.name, label=r.label, content_type=r.content_type, sort_weight=r.sort_weight)


@router.delete("/renderers/{name}", status_code=204)
async def remove_renderer(name: str, service: ReportService = Depends(get_report_service)):
    """Unregister the renderer known by id"""
    with report_errors():
        service.remove_renderer_by_name(name)
    return Response(status_code=204)


@router.get("/macros", response_model=MacroTable)
async def get_macros(service: ReportService = Depends(get_report_service)):
    """The report XML macro table"""
    with report_errors():
        return MacroTable(macros=service.get_report_xml_macros())


@router.put("/macros", response_model=MacroTable)
async def save_macros(table: MacroTable,
                      session: UserSession = Depends(require_session),
                      service: ReportService = Depends(get_report_service)):
    """Replace the report XML macro table"""
    with report_errors():
        service.save_report_xml_macros(table.macros, username=session.username)
        return MacroTable(macros=service.get_report_xml_macros())
