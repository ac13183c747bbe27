"""
Main Application - Report Engine Web Interface

FastAPI web application exposing report schema storage, evaluation,
rendering, renderer management and the XML macro table. Collaborators are
constructed once at startup and kept in app_state.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import pandas as pd
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import config, setup_logging, UnifiedConfig
from .database import SqliteReportRepository
from .settings_manager import SqliteMacroStore
from .reports.datasets import DataFramePopulation
from .reports.evaluator import ReportEvaluator
from .reports.renderers import RendererRegistry
from .reports.router import router as reports_router
from .reports.service import ReportService

logger = logging.getLogger(__name__)

app_state: Dict[str, Any] = {
    "report_service": None,
}


def load_population(cfg: UnifiedConfig) -> DataFramePopulation:
    """Population from the configured CSV file or report database table; empty when neither exists"""
    rep = cfg.reporting
    if rep.population_file is not None:
        return DataFramePopulation.from_csv(rep.population_file, rep.subject_id_column)

    db_path = cfg.database.path
    if db_path.exists():
        with sqlite3.connect(str(db_path)) as conn:
            found = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
                (rep.population_table,)
            ).fetchone()
        if found:
            return DataFramePopulation.from_sqlite(db_path, rep.population_table, rep.subject_id_column)

    logger.warning("No population source configured; reports will evaluate over no subjects")
    return DataFramePopulation(pd.DataFrame({rep.subject_id_column: []}), rep.subject_id_column)


def build_report_service(cfg: Optional[UnifiedConfig] = None) -> ReportService:
    """Construct the report service and its collaborators from configuration"""
    cfg = cfg or config
    repository = SqliteReportRepository(cfg.database.path, cfg.database.connection_timeout)
    macro_store = SqliteMacroStore(cfg.database.path, cfg.database.connection_timeout)
    registry = RendererRegistry.from_names(cfg.reporting.renderers)
    evaluator = ReportEvaluator(load_population(cfg))
    return ReportService(
        repository,
        macro_store,
        registry,
        evaluator,
        macro_prefix=cfg.reporting.macro_prefix,
        macro_suffix=cfg.reporting.macro_suffix,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown"""
    setup_logging()
    if app_state.get("report_service") is None:
        app_state["report_service"] = build_report_service()
    logger.info(f"Report engine started ({config.environment.value})")
    yield
    logger.info("Report engine stopped")


app = FastAPI(
    title="Report Engine",
    description="Report schema evaluation and rendering",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.web.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(reports_router)


@app.get("/api/health")
async def health():
    """Liveness check"""
    return {"status": "ok", "environment": config.environment.value}


def main():
    """Run the web server"""
    uvicorn.run(
        "report_core.app:app",
        host=config.web.host,
        port=config.web.port,
        reload=config.web.reload,
        log_level=config.web.log_level,
    )


if __name__ == "__main__":
    main()
