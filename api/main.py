"""
Missing Money Search API - FastAPI Backend
Accepts owner searches and runs them through the shared browser slots.
"""

import json
from datetime import datetime
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from api.config import config
from api.logging_config import logger, log_request, log_search

from core.models import SearchRequest
from core.orchestrator import OrchestratorConfig, SearchOrchestrator
from core.slot_manager import SlotManager

VERSION = "1.0.0"
REQUIRED_FIELDS = ("firstName", "lastName", "city", "state")


# === Lifespan Management ===

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    # Startup
    logger.info("Starting Missing Money search API...")
    for problem in config.validate():
        logger.warning(f"Configuration problem: {problem}")

    slots = SlotManager(
        capacity=config.MAX_CONCURRENT_BROWSERS,
        queue_timeout=config.QUEUE_TIMEOUT_SECONDS,
    )
    app.state.slots = slots
    app.state.orchestrator = SearchOrchestrator(OrchestratorConfig.from_app_config(config), slots)
    logger.info(
        f"Browser slots: {slots.capacity}, queue timeout {slots.queue_timeout:.0f}s, "
        f"search timeout {config.SEARCH_TIMEOUT_SECONDS:.0f}s"
    )

    yield
    # Shutdown
    logger.info("Shutting down Missing Money search API...")
    logger.info(f"Final stats: {app.state.orchestrator.get_stats()}")


# Initialize FastAPI app
app = FastAPI(
    title="Missing Money Search API",
    description="Searches missingmoney.com for unclaimed property held for a person",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if config.DEBUG else None,
    redoc_url="/redoc" if config.DEBUG else None,
)

# CORS configuration - restricted to specific origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=config.CORS_ALLOW_CREDENTIALS,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
)


# === Request Logging Middleware ===

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests."""
    start_time = datetime.now()
    response = await call_next(request)
    duration = (datetime.now() - start_time).total_seconds() * 1000
    log_request(request.method, request.url.path, response.status_code, duration)
    return response


# === Pydantic Models ===

class MissingMoneySearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    city: Optional[str] = None
    state: Optional[str] = None
    use_2captcha: bool = Field(default=False, alias="use2Captcha")
    captcha_api_key: Optional[str] = Field(default=None, alias="captchaApiKey")

    def missing_fields(self):
        values = {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "city": self.city,
            "state": self.state,
        }
        return [name for name in REQUIRED_FIELDS if not (values[name] or "").strip()]

    def to_search_request(self) -> SearchRequest:
        return SearchRequest.create(
            first_name=self.first_name,
            last_name=self.last_name,
            city=self.city,
            state=self.state,
            use_challenge_solver=self.use_2captcha,
            solver_api_key=self.captcha_api_key,
        )


def get_orchestrator(request: Request) -> SearchOrchestrator:
    """Shared orchestrator created at startup."""
    return request.app.state.orchestrator


def error_response(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


# === API Endpoints ===

@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "version": VERSION,
    }


@app.get("/api/stats")
async def stats(orchestrator: SearchOrchestrator = Depends(get_orchestrator)):
    """Slot usage and search counters."""
    return orchestrator.get_stats()


@app.post("/api/search-missing-money")
async def search_missing_money(request: Request, orchestrator: SearchOrchestrator = Depends(get_orchestrator)):
    """
    Run one Missing Money search.

    Search failures come back as HTTP 200 with ``success: false``; only
    malformed input (400) and unexpected server errors (500) change the status.
    """
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error(f"Invalid JSON body: {e}")
        return error_response(500, "Invalid JSON in request body")

    if not isinstance(payload, dict):
        return error_response(400, "Request body must be a JSON object")

    try:
        body = MissingMoneySearchRequest.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Rejected search body: {e.errors()}")
        return error_response(400, "Invalid request body")

    missing = body.missing_fields()
    if missing:
        return error_response(400, f"Missing required fields: {', '.join(missing)}")

    search = body.to_search_request()
    try:
        outcome = await orchestrator.search(search)
    except Exception as e:
        logger.exception(f"Search {search.request_id} crashed: {e}")
        return error_response(500, "Internal server error while searching")

    log_search(
        search.request_id,
        search.state,
        outcome.success,
        results=len(outcome.results),
        total=outcome.total_amount,
        error=outcome.error,
    )
    return outcome.to_dict()
