# match_agent/nodes.py
import json
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from scholar_match.core.cache import TTLCache
from scholar_match.core.telemetry import TelemetrySink, TelemetryStep
from .reranker import RerankFailure, RerankResult, ScholarshipReranker
from .schemas import CandidateRow, EligibilityFilter, RankedScholarship, RerankCandidate

logger = logging.getLogger(__name__)

MIN_CANDIDATES_FOR_RERANK = 3
RERANK_CACHE_TTL_MS = 24 * 60 * 60 * 1000
# Bump when the cached row shape or rerank contract changes
CACHE_SCHEMA_VERSION = 1

EMBED_FAILED_MESSAGE = "Failed to embed student summary"
RETRIEVE_FAILED_MESSAGE = "Failed to retrieve scholarships"


def _elapsed_ms(started: float) -> float:
    return (time.time() - started) * 1000


def build_cache_key(
    summary: str,
    min_gpa: Optional[float],
    k: int,
    eligibility: Optional[EligibilityFilter] = None,
) -> str:
    return json.dumps(
        {
            "kind": "match-rerank",
            "summary": summary,
            "minGpa": min_gpa,
            "k": k,
            "eligibility": eligibility.model_dump(exclude_none=True) if eligibility else None,
            "version": CACHE_SCHEMA_VERSION,
        },
        sort_keys=True,
    )


def to_rerank_candidates(rows: Sequence[CandidateRow]) -> List[RerankCandidate]:
    return [RerankCandidate(id=str(r.id), name=r.name, snippet=r.snippet or "") for r in rows]


def merge_ranking(rows: Sequence[CandidateRow], ranking: Sequence[RankedScholarship]) -> List[CandidateRow]:
    """
    Reorder rows to follow the reranker and attach score/rationale.

    Ranked ids that match no retrieved row are dropped.
    """
    by_id = {str(row.id): row for row in rows}
    merged: List[CandidateRow] = []
    for ranked in ranking:
        base = by_id.get(ranked.id)
        if base is None:
            logger.warning(f"Dropping ranked id with no matching row: {ranked.id}")
            continue
        merged.append(base.model_copy(update={"score": ranked.score, "rationale": ranked.rationale}))
    return merged


async def embed_node(state: Dict[str, Any], embedder, telemetry: TelemetrySink) -> Dict[str, Any]:
    started = time.time()
    try:
        [embedding] = await embedder.embed([state["summary"]])
    except Exception as e:
        duration = _elapsed_ms(started)
        telemetry.record(TelemetryStep.EMBED, False, duration, error=str(e))
        logger.error(f"Embedding failed after {duration:.1f}ms: {e}")
        return {
            "failed_stage": "embed",
            "error": EMBED_FAILED_MESSAGE,
            "embed_ms": duration,
            "route": "end",
        }

    duration = _elapsed_ms(started)
    telemetry.record(TelemetryStep.EMBED, True, duration)
    return {"embedding": embedding, "embed_ms": duration}


async def retrieve_node(state: Dict[str, Any], store, telemetry: TelemetrySink) -> Dict[str, Any]:
    started = time.time()
    try:
        rows = await store.top_k_by_embedding(
            state["embedding"],
            state["k"],
            state.get("min_gpa"),
            state.get("eligibility"),
        )
    except Exception as e:
        duration = _elapsed_ms(started)
        telemetry.record(TelemetryStep.RETRIEVE, False, duration, error=str(e))
        logger.error(f"Retrieval failed after {duration:.1f}ms: {e}")
        return {
            "failed_stage": "retrieve",
            "error": RETRIEVE_FAILED_MESSAGE,
            "retrieve_ms": duration,
            "route": "end",
        }

    rows = list(rows)[: state["k"]]
    duration = _elapsed_ms(started)
    telemetry.record(TelemetryStep.RETRIEVE, True, duration, meta={"count": len(rows)})
    logger.debug(f"Retrieved {len(rows)} candidates")
    return {"rows": rows, "retrieve_ms": duration}


def decision_router_node(state: Dict[str, Any]) -> Dict[str, Any]:
    n = len(state.get("rows", []))

    if n < MIN_CANDIDATES_FOR_RERANK:
        return {"route": "end", "used_reranker": False, "skip_reason": "not_enough_candidates"}

    if not state.get("use_reranker", True):
        return {"route": "end", "used_reranker": False, "skip_reason": "reranker_disabled"}

    return {"route": "rerank"}


async def rerank_node(
    state: Dict[str, Any],
    reranker: ScholarshipReranker,
    cache: TTLCache,
    telemetry: TelemetrySink,
) -> Dict[str, Any]:
    rows: List[CandidateRow] = state["rows"]
    summary = state["summary"]
    cache_key = build_cache_key(summary, state.get("min_gpa"), state["k"], state.get("eligibility"))

    cached = cache.get(cache_key)
    if cached is not None:
        logger.debug("Rerank cache hit")
        return {
            "rows": [row.model_copy() for row in cached],
            "used_reranker": True,
            "cache_hit": True,
            "rerank_ms": 0.0,
            "route": "end",
        }

    started = time.time()
    try:
        result: RerankResult = await reranker.rerank(summary, to_rerank_candidates(rows))
    except Exception as e:
        logger.error(f"Reranker raised unexpectedly: {e}", exc_info=True)
        result = RerankFailure(reason="llm_error", error=str(e))
    duration = _elapsed_ms(started)

    if isinstance(result, RerankFailure):
        telemetry.record(
            TelemetryStep.RERANK,
            False,
            duration,
            meta={"reason": result.reason},
            error=result.error,
        )
        logger.warning(f"Rerank failed ({result.reason}); falling back to vector order: {result.error}")
        return {
            "used_reranker": False,
            "cache_hit": False,
            "rerank_error": result.error,
            "route": "end",
        }

    reranked = merge_ranking(rows, result.ranking)
    telemetry.record(TelemetryStep.RERANK, True, duration, meta={"count": len(reranked)})
    cache.set(cache_key, [row.model_copy() for row in reranked], RERANK_CACHE_TTL_MS)

    return {
        "rows": reranked,
        "used_reranker": True,
        "cache_hit": False,
        "rerank_ms": duration,
        "route": "end",
    }
