import json
import logging
import time
from typing import Any, Dict, List, Optional

from scholar_match.core.cache import TTLCache
from scholar_match.core.telemetry import TelemetrySink, TelemetryStep
from .match_graph import build_graph
from .nodes import RERANK_CACHE_TTL_MS
from .reranker import RerankFailure, ScholarshipReranker
from .schemas import (
    MatchFailure,
    MatchMeta,
    MatchRequest,
    MatchResponse,
    MatchSuccess,
    RerankCandidate,
    clamp_k,
)

logger = logging.getLogger(__name__)


class MatchWorkflow:
    """Orchestrates embed -> retrieve -> optional rerank for one match request"""

    def __init__(
        self,
        embedder,
        store,
        reranker: ScholarshipReranker,
        cache: TTLCache,
        telemetry: TelemetrySink,
    ):
        self.embedder = embedder
        self.store = store
        self.reranker = reranker
        self.cache = cache
        self.telemetry = telemetry

        # Build the workflow graph
        self.graph = build_graph(embedder, store, reranker, cache, telemetry)

    async def run_match(self, request: MatchRequest) -> MatchResponse:
        """
        Run the complete match workflow.

        Never raises: fatal stage failures come back as MatchFailure and
        reranker problems degrade to the vector-ranked order.
        """
        started = time.time()

        validated_request = self._validate_request(request)
        if not validated_request["valid"]:
            self.telemetry.record(
                TelemetryStep.PIPELINE,
                False,
                self._elapsed_ms(started),
                meta={"failedAt": "validate"},
                error=validated_request["error"],
            )
            return MatchFailure(error=validated_request["error"], kind="validation")

        initial_state = {
            "summary": validated_request["summary"],
            "k": clamp_k(request.k),
            "min_gpa": request.min_gpa,
            "eligibility": request.eligibility,
            "use_reranker": request.use_reranker,
        }

        try:
            result = await self.graph.ainvoke(initial_state)
            return self._format_response(result, started)
        except Exception as e:
            total_ms = self._elapsed_ms(started)
            logger.error(f"Match workflow crashed: {e}", exc_info=True)
            self.telemetry.record(
                TelemetryStep.PIPELINE, False, total_ms, meta={"failedAt": "workflow"}, error=str(e)
            )
            return MatchFailure(error="Match workflow failed", kind="internal")

    def _validate_request(self, request: MatchRequest) -> Dict[str, Any]:
        summary = (request.student_summary or "").strip()
        if not summary:
            return {"valid": False, "error": "student_summary is required"}
        return {"valid": True, "summary": summary}

    def _format_response(self, result: Dict[str, Any], started: float) -> MatchResponse:
        total_ms = self._elapsed_ms(started)

        failed_stage = result.get("failed_stage")
        if failed_stage:
            self.telemetry.record(
                TelemetryStep.PIPELINE, False, total_ms, meta={"failedAt": failed_stage}
            )
            return MatchFailure(error=result.get("error") or "Match failed", kind="upstream")

        used_reranker = bool(result.get("used_reranker", False))
        rerank_error = result.get("rerank_error")
        pipeline_meta: Dict[str, Any] = {"usedReranker": used_reranker}
        if result.get("skip_reason"):
            pipeline_meta["reason"] = result["skip_reason"]
        if "cache_hit" in result:
            pipeline_meta["cacheHit"] = bool(result["cache_hit"])
        if rerank_error:
            pipeline_meta["failedAt"] = "rerank"

        response = MatchSuccess(
            rows=result.get("rows", []),
            meta=MatchMeta(
                usedReranker=used_reranker,
                totalMs=round(total_ms, 2),
                embedMs=round(result.get("embed_ms", 0.0), 2),
                retrieveMs=round(result.get("retrieve_ms", 0.0), 2),
                rerankMs=round(result["rerank_ms"], 2) if used_reranker and result.get("rerank_ms") is not None else None,
            ),
        )
        self.telemetry.record(TelemetryStep.PIPELINE, rerank_error is None, total_ms, meta=pipeline_meta)
        return response

    async def rerank_candidates(
        self, student_summary: str, candidates: List[RerankCandidate], top_k: int
    ) -> Dict[str, Any]:
        """Standalone rerank of caller-supplied candidates, cached for 24h"""
        cache_key = _rerank_api_cache_key(student_summary, candidates, top_k)

        cached = self.cache.get(cache_key)
        if cached is not None:
            return {"ok": True, "ranking": cached}

        result = await self.reranker.rerank(student_summary, candidates)
        if isinstance(result, RerankFailure):
            self.telemetry.record(
                TelemetryStep.RERANK, False, result.duration_ms, meta={"reason": result.reason}, error=result.error
            )
            return {"ok": False, "error": result.error[:4000]}

        top = [
            {"id": r.id, "score": round(r.score), "rationale": r.rationale}
            for r in result.ranking[:top_k]
        ]
        self.cache.set(cache_key, top, RERANK_CACHE_TTL_MS)
        self.telemetry.record(TelemetryStep.RERANK, True, result.duration_ms, meta={"count": len(top)})
        return {"ok": True, "ranking": top}

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return (time.time() - started) * 1000


def _rerank_api_cache_key(student_summary: str, candidates: List[RerankCandidate], top_k: int) -> str:
    return json.dumps(
        {
            "kind": "rerank-api",
            "student_summary": student_summary,
            "candidates": [c.model_dump() for c in candidates],
            "top_k": top_k,
            "version": 1,
        },
        sort_keys=True,
    )


# Factory function for easy import
def create_match_workflow(settings, db=None, cache: Optional[TTLCache] = None,
                          telemetry: Optional[TelemetrySink] = None) -> MatchWorkflow:
    from scholar_match.core.embedding import ScholarshipEmbedding
    from scholar_match.core.pgvector_search import PGVectorSearchService
    from scholar_match.database.postgresql import PostgreSQLManager
    from .llm_client import LLMClient

    embedder = ScholarshipEmbedding(
        api_key=settings.openai_api_key,
        model=settings.embedding_model,
        dimensions=settings.embed_dim,
        azure_endpoint=settings.openai_api_base_embedding,
        timeout=settings.embed_timeout_seconds,
    )
    store = PGVectorSearchService(
        db if db is not None else PostgreSQLManager.from_settings(settings),
        timeout=settings.store_timeout_seconds,
    )
    llm_client = LLMClient(
        api_key=settings.openai_api_key,
        base_url=settings.openai_api_base,
        model=settings.llm_model,
        timeout=settings.rerank_timeout_seconds,
        max_retries=0,
    )
    reranker = ScholarshipReranker(llm_client, timeout=settings.rerank_timeout_seconds)

    return MatchWorkflow(
        embedder=embedder,
        store=store,
        reranker=reranker,
        cache=cache if cache is not None else TTLCache(max_entries=settings.cache_max_entries),
        telemetry=telemetry if telemetry is not None else TelemetrySink(capacity=settings.telemetry_capacity),
    )
