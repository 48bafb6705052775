"""
LLM reranker for scholarship candidates.

rerank() never raises for provider or contract problems; it returns a
RerankFailure that the workflow turns into a vector-order fallback.
"""

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Union

from pydantic import ValidationError

from scholar_match.core.exceptions import RerankContractError
from .llm_client import LLMClient
from .prompt import SYSTEM_PROMPT, USER_PROMPT_TEMPLATE
from .schemas import RankedScholarship, RerankCandidate, RerankOutput

logger = logging.getLogger(__name__)

MAX_SNIPPET_CHARS = 280
_FENCE_OPEN = re.compile(r"^```[a-zA-Z]*\n?")
_FENCE_CLOSE = re.compile(r"```\s*$")


@dataclass(frozen=True)
class RerankSuccess:
    ranking: List[RankedScholarship]
    duration_ms: float = 0.0


@dataclass(frozen=True)
class RerankFailure:
    reason: str  # timeout | llm_error | malformed | contract
    error: str
    duration_ms: float = 0.0


RerankResult = Union[RerankSuccess, RerankFailure]


def coerce_json(text: str) -> Dict[str, Any]:
    """Strip markdown fences and trim to the outermost JSON object before parsing."""
    t = (text or "").strip()
    if t.startswith("```"):
        t = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", t))
    start = t.find("{")
    end = t.rfind("}")
    if start >= 0 and end > start:
        t = t[start:end + 1]
    return json.loads(t)


def validate_ranking(payload: Any, candidate_ids: Sequence[str]) -> List[RankedScholarship]:
    """
    Check the parsed LLM payload against the rerank contract.

    Raises pydantic.ValidationError for shape/range problems and
    RerankContractError when ids are duplicated, missing or unknown.
    """
    output = RerankOutput.model_validate(payload)
    ranked_ids = [item.id for item in output.ranking]

    seen = set()
    duplicates = set()
    for ranked_id in ranked_ids:
        if ranked_id in seen:
            duplicates.add(ranked_id)
        seen.add(ranked_id)
    if duplicates:
        raise RerankContractError(f"duplicate ids in ranking: {sorted(duplicates)}")

    expected = set(candidate_ids)
    missing = sorted(expected - seen)
    if missing:
        raise RerankContractError(f"ranking is missing ids: {missing}")
    unknown = sorted(seen - expected)
    if unknown:
        raise RerankContractError(f"ranking has unknown ids: {unknown}")

    return output.ranking


def candidates_to_payload(candidates: Sequence[RerankCandidate]) -> List[Dict[str, Any]]:
    return [
        {
            "idx": i + 1,
            "id": c.id,
            "name": c.name,
            "desc": (c.snippet or "")[:MAX_SNIPPET_CHARS],
        }
        for i, c in enumerate(candidates)
    ]


class ScholarshipReranker:
    def __init__(self, llm_client: LLMClient, timeout: float = 30.0, max_tokens: int = 2000):
        self.llm_client = llm_client
        self.timeout = timeout
        self.max_tokens = max_tokens

    async def rerank(self, student_summary: str, candidates: Sequence[RerankCandidate]) -> RerankResult:
        started = time.time()

        def elapsed_ms() -> float:
            return (time.time() - started) * 1000

        if not candidates:
            return RerankFailure(reason="contract", error="no candidates to rerank")

        user_prompt = USER_PROMPT_TEMPLATE.format(
            student_summary=student_summary,
            candidate_count=len(candidates),
            candidates_json=json.dumps(candidates_to_payload(candidates), ensure_ascii=False),
        )

        try:
            text = await asyncio.wait_for(
                self.llm_client.analyze_with_context(
                    system_prompt=SYSTEM_PROMPT,
                    user_prompt=user_prompt,
                    temperature=0.0,
                    max_tokens=self.max_tokens,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            return RerankFailure(
                reason="timeout",
                error=f"Rerank timeout after {self.timeout}s",
                duration_ms=elapsed_ms(),
            )
        except Exception as e:
            logger.warning(f"Reranker LLM call failed: {e}")
            return RerankFailure(reason="llm_error", error=str(e), duration_ms=elapsed_ms())

        try:
            payload = coerce_json(text)
        except ValueError as e:
            return RerankFailure(
                reason="malformed",
                error=f"Reranker returned invalid JSON: {e}",
                duration_ms=elapsed_ms(),
            )

        try:
            ranking = validate_ranking(payload, [c.id for c in candidates])
        except ValidationError as e:
            return RerankFailure(
                reason="malformed",
                error=f"Reranker response failed validation: {e.error_count()} error(s)",
                duration_ms=elapsed_ms(),
            )
        except RerankContractError as e:
            return RerankFailure(reason="contract", error=str(e), duration_ms=elapsed_ms())

        return RerankSuccess(ranking=ranking, duration_ms=elapsed_ms())
