"""
FastAPI Server for Attribution Engine

Provides REST API endpoints for:
- Channel bootstrap and listing
- Attribution report generation, retrieval and export
- Model comparison and single-journey attribution
- Funnel analysis, journey maps and user event history
- Health checks and system status
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Depends, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from loguru import logger
import uvicorn

from config import settings
from database.repository import SQLAlchemyDataSource
from database.session import create_db_engine, create_session_factory, init_db
from engine.calculator import AttributionCalculator
from engine.channels import ChannelRegistry
from engine.data_source import AttributionDataSource
from engine.exceptions import (
    AttributionEngineError, InvalidJourneyError, InvalidValueError, EventNotFoundError,
    PersistenceError, ReportTimeoutError, DuplicateChannelError
)
from engine.health_check import HealthChecker
from engine.funnel import FunnelAnalyzer
from engine.journey import JourneyAssembler, USER_HISTORY_HOURS
from engine.logging_utils import (
    configure_logging, generate_correlation_id, set_correlation_id, get_correlation_id
)
from engine.reports import ReportAggregator, export_channel_breakdown_csv
from models.attribution import (
    AttributionEvent, AttributionModelType, AttributionReport, AttributionResult, Channel,
    ChannelDefinition, FunnelAnalysis, FunnelStep, JourneyMap, ModelComparison,
    ProjectStatus, ReportType, to_naive_utc
)


# ============================================================================
# FastAPI App Setup
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_file_path)
    logger.info("Attribution Engine API started")
    yield
    if _db_engine is not None:
        _db_engine.dispose()


app = FastAPI(
    lifespan=lifespan,
    title="Attribution Engine API",
    description="REST API for multi-touch attribution reporting",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

CORRELATION_HEADER = "X-Correlation-ID"

_db_engine = None
_data_source: Optional[AttributionDataSource] = None


# ============================================================================
# Request/Response Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    timestamp: str
    components: List[Dict[str, Any]]
    summary: Dict[str, int]


class InitializeRequest(BaseModel):
    """Channel bootstrap request"""
    project_id: str = Field(..., min_length=1)


class DateRangeRequest(BaseModel):
    """Project and inclusive date range shared by the analysis requests"""
    project_id: str = Field(..., min_length=1)
    start_date: datetime
    end_date: datetime

    @field_validator('start_date', 'end_date')
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        """Offsets and 'Z' suffixes are converted so both ends compare as naive UTC"""
        return to_naive_utc(v)

    @model_validator(mode='after')
    def validate_range(self):
        if self.start_date > self.end_date:
            raise ValueError('start_date must not be after end_date')
        return self


class ReportRequest(DateRangeRequest):
    """Report generation request"""
    report_type: ReportType = ReportType.CHANNEL_PERFORMANCE
    attribution_model: AttributionModelType = Field(
        default_factory=lambda: AttributionModelType(settings.attribution_model)
    )
    lookback_days: Optional[int] = Field(None, ge=1, le=365)
    top_paths_limit: Optional[int] = Field(None, ge=1, le=100)
    channel_spend: Optional[Dict[str, float]] = Field(None, description="Spend per channel id")
    timeout_seconds: Optional[float] = Field(None, gt=0)


class CompareModelsRequest(DateRangeRequest):
    """Model comparison request"""
    lookback_days: Optional[int] = Field(None, ge=1, le=365)


class FunnelRequest(DateRangeRequest):
    """Funnel analysis request"""
    funnel_name: str = Field(..., min_length=1, max_length=255)
    funnel_steps: List[FunnelStep] = Field(..., min_length=1)


class JourneyMapRequest(DateRangeRequest):
    """Journey map request"""
    user_identifier: Optional[str] = Field(None, min_length=1)
    limit: int = Field(100, ge=1, le=1000)
    attribution_model: AttributionModelType = Field(
        default_factory=lambda: AttributionModelType(settings.attribution_model)
    )
    lookback_days: Optional[int] = Field(None, ge=1, le=365)


class CalculateRequest(BaseModel):
    """Single-journey attribution request"""
    project_id: str = Field(..., min_length=1)
    conversion_event_id: str = Field(..., min_length=1)
    attribution_model: AttributionModelType = Field(
        default_factory=lambda: AttributionModelType(settings.attribution_model)
    )
    lookback_days: Optional[int] = Field(None, ge=1, le=365)


class ReportListItem(BaseModel):
    """Stored report summary"""
    id: str
    report_type: ReportType
    attribution_model: AttributionModelType
    start_date: datetime
    end_date: datetime
    generated_at: datetime
    total_conversions: int
    total_revenue: float


# ============================================================================
# Middleware & Error Mapping
# ============================================================================

@app.middleware("http")
async def add_correlation_id(request: Request, call_next):
    """Tag every request with a correlation ID (reusing the caller's if sent)"""
    correlation_id = request.headers.get(CORRELATION_HEADER) or generate_correlation_id()
    set_correlation_id(correlation_id)
    response = await call_next(request)
    response.headers[CORRELATION_HEADER] = correlation_id
    return response


ERROR_STATUS_CODES = [
    (InvalidJourneyError, 422),
    (InvalidValueError, 422),
    (EventNotFoundError, 404),
    (DuplicateChannelError, 409),
    (ReportTimeoutError, 504),
    (PersistenceError, 503),
]


@app.exception_handler(AttributionEngineError)
async def attribution_error_handler(request: Request, exc: AttributionEngineError):
    status_code = next((code for cls, code in ERROR_STATUS_CODES if isinstance(exc, cls)), 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": str(exc),
            "error": type(exc).__name__,
            "correlation_id": get_correlation_id()
        }
    )


# ============================================================================
# Dependency Injection
# ============================================================================

def get_db_engine():
    """Create the database engine on first use"""
    global _db_engine
    if _db_engine is None:
        _db_engine = create_db_engine(settings.database_url)
        init_db(_db_engine)
    return _db_engine


def get_data_source() -> AttributionDataSource:
    """Shared data source for all requests"""
    global _data_source
    if _data_source is None:
        _data_source = SQLAlchemyDataSource(create_session_factory(get_db_engine()))
    return _data_source


def get_aggregator(data_source: AttributionDataSource = Depends(get_data_source)) -> ReportAggregator:
    return ReportAggregator(data_source)


def get_calculator() -> AttributionCalculator:
    return AttributionCalculator(settings.time_decay_half_life_hours)


# ============================================================================
# Health & Status Endpoints
# ============================================================================

@app.get("/", tags=["Status"])
async def root():
    """Root endpoint"""
    return {
        "service": "Attribution Engine API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


@app.get("/health", response_model=HealthResponse, tags=["Status"])
def health_check():
    """
    Health check of all system components

    Returns health status of:
    - Configuration
    - Database connection
    """
    try:
        engine = get_db_engine()
    except Exception as e:
        logger.error(f"Database engine unavailable: {e}")
        engine = None
    return HealthChecker(engine).check_all(settings)


# ============================================================================
# Channel Endpoints
# ============================================================================

@app.post("/attribution/initialize", response_model=List[Channel], tags=["Channels"])
def initialize_project(
    request: InitializeRequest,
    response: Response,
    data_source: AttributionDataSource = Depends(get_data_source)
):
    """
    Create the default channel set for a project

    Returns 201 when channels were created, 200 when the project was
    already initialized.
    """
    registry = ChannelRegistry(data_source)
    already_initialized = registry.is_initialized(request.project_id)
    channels = registry.create_default_channels(request.project_id)
    response.status_code = 200 if already_initialized else 201
    return channels


@app.get("/attribution/channels/{project_id}", response_model=List[Channel], tags=["Channels"])
def list_channels(project_id: str, data_source: AttributionDataSource = Depends(get_data_source)):
    """List the channels of a project"""
    return ChannelRegistry(data_source).list_channels(project_id)


@app.post("/attribution/channels/{project_id}", response_model=Channel, status_code=201, tags=["Channels"])
def create_channel(
    project_id: str,
    definition: ChannelDefinition,
    data_source: AttributionDataSource = Depends(get_data_source)
):
    """Add a custom channel to a project"""
    return ChannelRegistry(data_source).create_channel(project_id, definition)


# ============================================================================
# Report Endpoints
# ============================================================================

@app.post("/attribution/reports", response_model=AttributionReport, status_code=201, tags=["Reports"])
def generate_report(request: ReportRequest, aggregator: ReportAggregator = Depends(get_aggregator)):
    """
    Generate and store an attribution report

    The report is computed synchronously; the response carries the stored report.
    """
    return aggregator.generate_report(
        project_id=request.project_id,
        report_type=request.report_type,
        model=request.attribution_model,
        start_date=request.start_date,
        end_date=request.end_date,
        lookback_days=request.lookback_days,
        top_paths_limit=request.top_paths_limit,
        channel_spend=request.channel_spend,
        timeout=request.timeout_seconds
    )


@app.get("/attribution/reports/{report_id}", response_model=AttributionReport, tags=["Reports"])
def get_report(report_id: str, aggregator: ReportAggregator = Depends(get_aggregator)):
    """Fetch a stored report"""
    report = aggregator.get_report(report_id)
    if report is None:
        raise HTTPException(status_code=404, detail=f"Report '{report_id}' not found")
    return report


@app.delete("/attribution/reports/{report_id}", tags=["Reports"])
def delete_report(report_id: str, aggregator: ReportAggregator = Depends(get_aggregator)):
    """Delete a stored report"""
    if not aggregator.delete_report(report_id):
        raise HTTPException(status_code=404, detail=f"Report '{report_id}' not found")
    return {"deleted": True, "report_id": report_id}


@app.get("/attribution/projects/{project_id}/reports", response_model=List[ReportListItem], tags=["Reports"])
def list_reports(project_id: str, aggregator: ReportAggregator = Depends(get_aggregator)):
    """List the stored reports of a project, newest first"""
    return [
        ReportListItem(
            id=r.id,
            report_type=r.report_type,
            attribution_model=r.attribution_model,
            start_date=r.start_date,
            end_date=r.end_date,
            generated_at=r.generated_at,
            total_conversions=r.total_conversions,
            total_revenue=r.total_revenue
        )
        for r in aggregator.list_reports(project_id)
    ]


@app.get("/attribution/reports/{report_id}/export", tags=["Reports"])
def export_report(report_id: str, aggregator: ReportAggregator = Depends(get_aggregator)):
    """Download the channel breakdown of a report as CSV"""
    report = aggregator.get_report(report_id)
    if report is None:
        raise HTTPException(status_code=404, detail=f"Report '{report_id}' not found")
    return Response(
        content=export_channel_breakdown_csv(report),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="attribution-report-{report_id}.csv"'}
    )


# ============================================================================
# Attribution Endpoints
# ============================================================================

@app.post("/attribution/compare-models", response_model=ModelComparison, tags=["Attribution"])
def compare_models(request: CompareModelsRequest, aggregator: ReportAggregator = Depends(get_aggregator)):
    """Channel credit for the same conversions under every attribution model"""
    return aggregator.compare_models(
        project_id=request.project_id,
        start_date=request.start_date,
        end_date=request.end_date,
        lookback_days=request.lookback_days
    )


@app.post("/attribution/calculate", response_model=AttributionResult, tags=["Attribution"])
def calculate_attribution(
    request: CalculateRequest,
    data_source: AttributionDataSource = Depends(get_data_source),
    calculator: AttributionCalculator = Depends(get_calculator)
):
    """Assemble one conversion's journey and return its touchpoint weights"""
    assembler = JourneyAssembler(data_source, request.project_id)
    conversion = assembler.resolve_conversion(request.conversion_event_id)
    journey = assembler.assemble_journey(
        conversion.user_identifier, conversion, request.lookback_days
    )
    return calculator.calculate_result(journey, conversion.id, request.attribution_model)


@app.post("/attribution/analyze-funnel", response_model=FunnelAnalysis, tags=["Attribution"])
def analyze_funnel(request: FunnelRequest, data_source: AttributionDataSource = Depends(get_data_source)):
    """
    Step completion and drop-off for an ordered funnel

    A user completes a step when their events of that type follow the
    previous step's.
    """
    return FunnelAnalyzer(data_source).analyze_funnel(
        project_id=request.project_id,
        funnel_name=request.funnel_name,
        steps=request.funnel_steps,
        start_date=request.start_date,
        end_date=request.end_date
    )


@app.post("/attribution/journey-map", response_model=JourneyMap, tags=["Attribution"])
def journey_map(request: JourneyMapRequest, aggregator: ReportAggregator = Depends(get_aggregator)):
    """Converting journeys of a date range with per-touchpoint credit"""
    return aggregator.journey_map(
        project_id=request.project_id,
        start_date=request.start_date,
        end_date=request.end_date,
        user_identifier=request.user_identifier,
        limit=request.limit,
        model=request.attribution_model,
        lookback_days=request.lookback_days
    )


@app.get(
    "/attribution/user-events/{project_id}/{user_identifier}",
    response_model=List[AttributionEvent],
    tags=["Attribution"]
)
def user_events(
    project_id: str,
    user_identifier: str,
    hours_back: float = Query(USER_HISTORY_HOURS, gt=0),
    data_source: AttributionDataSource = Depends(get_data_source)
):
    """A user's recent events, oldest first"""
    return JourneyAssembler(data_source, project_id).user_event_history(user_identifier, hours_back)


@app.get("/attribution/status/{project_id}", response_model=ProjectStatus, tags=["Attribution"])
def attribution_status(project_id: str, aggregator: ReportAggregator = Depends(get_aggregator)):
    """Whether the project has channels, and how many reports it stores"""
    return aggregator.project_status(project_id)


if __name__ == "__main__":
    logger.info("Starting Attribution Engine API server...")
    uvicorn.run(
        "api_server:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
