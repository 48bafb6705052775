from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from fastapi import FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from scholar_match.config.settings import settings
from scholar_match.core.cache import TTLCache
from scholar_match.core.telemetry import TelemetrySink, TelemetryStep
from scholar_match.database.postgresql import PostgreSQLManager
from scholar_match.match_agent.llm_client import LLMClient
from scholar_match.match_agent.schemas import (
    MatchFailure,
    MatchRequest,
    MatchResponse,
    RerankRequest,
)
from scholar_match.match_agent.workflow import create_match_workflow

logger = logging.getLogger(__name__)

DEFAULT_TELEMETRY_LIMIT = 100
MATCH_PATHS = ("/match", "/retrieve")
SUMMARY_FIELDS = ("student_summary", "studentSummary")


# -------------------------------------------------------------------
# Lifespan: process-wide services (pool, cache, telemetry, workflow)
# -------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    owned_db = None
    if getattr(app.state, "workflow", None) is None:
        owned_db = PostgreSQLManager.from_settings(settings)
        app.state.db = owned_db
        app.state.cache = TTLCache(max_entries=settings.cache_max_entries)
        app.state.telemetry = TelemetrySink(capacity=settings.telemetry_capacity)
        app.state.llm_client = LLMClient(
            api_key=settings.openai_api_key,
            base_url=settings.openai_api_base,
            model=settings.llm_model,
            timeout=settings.rerank_timeout_seconds,
        )
        app.state.workflow = create_match_workflow(
            settings,
            db=owned_db,
            cache=app.state.cache,
            telemetry=app.state.telemetry,
        )
        logger.info("Match workflow initialized")
    try:
        yield
    finally:
        if owned_db is not None:
            await app.state.workflow.embedder.close()
            await owned_db.close()
            app.state.workflow = None
            logger.info("Database pool closed")


# -------------------------------------------------------------------
# FastAPI app
# -------------------------------------------------------------------
app = FastAPI(
    title="Scholarship Match API",
    description="API for matching students to scholarships with vector search and LLM reranking",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],      # tighten later if needed
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------
def serialize_match_response(result: MatchResponse) -> Dict[str, Any]:
    """
    Wire shape: optional keys (score, rationale, rerankMs) are omitted when
    unset while nullable row fields (url, min_gpa) stay as null.
    """
    body = result.model_dump()
    if not body["ok"]:
        return body

    for row in body["rows"]:
        for key in ("score", "rationale"):
            if row.get(key) is None:
                row.pop(key, None)
    if body["meta"].get("rerankMs") is None:
        body["meta"].pop("rerankMs", None)
    return body


def status_for(result: MatchResponse) -> int:
    if not isinstance(result, MatchFailure):
        return status.HTTP_200_OK
    if result.kind == "validation":
        return status.HTTP_400_BAD_REQUEST
    if result.kind == "upstream":
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def clamp_telemetry_limit(limit: Optional[str], capacity: int) -> int:
    try:
        value = int(limit) if limit is not None else DEFAULT_TELEMETRY_LIMIT
    except (TypeError, ValueError):
        value = DEFAULT_TELEMETRY_LIMIT
    if value <= 0:
        value = DEFAULT_TELEMETRY_LIMIT
    return min(value, capacity)


async def _run(request: Request, match_request: MatchRequest) -> JSONResponse:
    workflow = request.app.state.workflow
    result = await workflow.run_match(match_request)

    if isinstance(result, MatchFailure):
        logger.warning(f"Match failed ({result.kind}): {result.error}")
    else:
        logger.info(
            f"Match completed - rows: {len(result.rows)}, "
            f"reranked: {result.meta.usedReranker}, total: {result.meta.totalMs:.1f}ms"
        )

    return JSONResponse(status_code=status_for(result), content=serialize_match_response(result))


def describe_validation_error(errors) -> str:
    """One short message for the first body error FastAPI reports."""
    if not errors:
        return "Invalid request body"
    first = errors[0]
    loc = [str(part) for part in first.get("loc", ()) if part != "body"]
    if loc and loc[-1] in SUMMARY_FIELDS:
        return "student_summary is required"
    if not loc:
        return "Invalid request body"
    return f"Invalid {'.'.join(loc)}: {first.get('msg', 'invalid value')}"


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Body errors answer as {ok: false, error} with 400, like workflow validation."""
    message = describe_validation_error(exc.errors())
    logger.warning(f"Rejected request to {request.url.path}: {message}")

    workflow = getattr(request.app.state, "workflow", None)
    if request.url.path in MATCH_PATHS and workflow is not None:
        workflow.telemetry.record(
            TelemetryStep.PIPELINE, False, 0.0, meta={"failedAt": "validate"}, error=message
        )

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"ok": False, "error": message},
    )


# -------------------------------------------------------------------
# Root / health endpoints
# -------------------------------------------------------------------
@app.get("/")
async def root():
    """Health check / root endpoint."""
    return {
        "message": "Scholarship Match API is running",
        "timestamp": datetime.now().isoformat(),
        "endpoints": ["/match", "/retrieve", "/rerank", "/admin/telemetry", "/docs"],
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "Scholarship Match API",
    }


@app.get("/db-health")
async def db_health(request: Request):
    """Sanity check for Postgres connectivity."""
    try:
        ok = await request.app.state.db.health()
    except Exception as e:
        logger.error(f"DB health check failed: {str(e)}")
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"ok": False})
    return {"ok": bool(ok)}


@app.get("/llm-health")
async def llm_health(request: Request):
    """One tiny LLM round-trip."""
    try:
        text = await request.app.state.llm_client.generate_text(
            "Reply with the single word: ready.", temperature=0.0, max_tokens=8
        )
    except Exception as e:
        logger.error(f"LLM health check failed: {str(e)}")
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"ok": False})
    return {"ok": True, "text": text}


# -------------------------------------------------------------------
# Match endpoints
# -------------------------------------------------------------------
@app.post("/match")
async def match(request: Request, match_request: MatchRequest):
    """
    Embed the student summary, retrieve top-K scholarships and (unless
    use_reranker is false or fewer than 3 candidates come back) rerank them
    with the LLM. Reranker failures fall back to vector order silently.
    """
    logger.info(f"Received match request (k={match_request.k}, reranker={match_request.use_reranker})")
    return await _run(request, match_request)


@app.post("/retrieve")
async def retrieve(request: Request, match_request: MatchRequest):
    """Vector-only variant of /match; reranking is always off."""
    logger.info(f"Received retrieve request (k={match_request.k})")
    return await _run(request, match_request.model_copy(update={"use_reranker": False}))


@app.post("/rerank")
async def rerank(request: Request, rerank_request: RerankRequest):
    """Setwise LLM reranking of caller-supplied candidates."""
    workflow = request.app.state.workflow
    result = await workflow.rerank_candidates(
        rerank_request.student_summary,
        rerank_request.candidates,
        rerank_request.top_k,
    )
    if not result["ok"]:
        logger.warning(f"Rerank failed: {result['error']}")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=result)
    return result


# -------------------------------------------------------------------
# Admin
# -------------------------------------------------------------------
@app.get("/admin/telemetry")
async def admin_telemetry(request: Request, limit: Optional[str] = Query(None)):
    """Recent telemetry events, most recent first."""
    telemetry: TelemetrySink = request.app.state.workflow.telemetry
    events = telemetry.get_recent(clamp_telemetry_limit(limit, telemetry.capacity))
    return {"ok": True, "events": [e.model_dump() for e in events]}


# -------------------------------------------------------------------
# Entrypoint
# -------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
