"""Shared fixtures and fakes for the scholar_match tests."""

import asyncio
import json
from typing import List, Optional
from unittest.mock import AsyncMock

import pytest

from scholar_match.core.cache import TTLCache
from scholar_match.core.telemetry import TelemetrySink
from scholar_match.match_agent.reranker import RerankSuccess
from scholar_match.match_agent.schemas import CandidateRow, RankedScholarship
from scholar_match.match_agent.workflow import MatchWorkflow


def run(coro):
    return asyncio.run(coro)


def make_rows(n: int, prefix: str = "s") -> List[CandidateRow]:
    """n rows in vector order (closest first)."""
    rows = []
    for i in range(n):
        distance = -0.9 + i * 0.01
        rows.append(
            CandidateRow(
                id=f"{prefix}{i + 1}",
                name=f"Scholarship {i + 1}",
                url=f"https://example.org/{prefix}{i + 1}" if i % 2 == 0 else None,
                min_gpa=3.0 if i % 3 == 0 else None,
                distance=distance,
                dot_sim=-distance,
                snippet=f"Award number {i + 1} for students in computing.",
            )
        )
    return rows


def ranking_for(ids, scores=None) -> List[RankedScholarship]:
    scores = scores or [max(0, 95 - 3 * i) for i in range(len(ids))]
    return [
        RankedScholarship(id=i, score=s, rationale=f"Good fit for {i}.")
        for i, s in zip(ids, scores)
    ]


def ranking_json(ids, scores=None) -> str:
    """Raw LLM reply; not validated so out-of-range scores can be expressed."""
    scores = scores or [max(0, 95 - 3 * i) for i in range(len(ids))]
    return json.dumps({"ranking": [
        {"id": i, "score": s, "rationale": f"Good fit for {i}."} for i, s in zip(ids, scores)
    ]})


class FakeReranker:
    """Stands in for ScholarshipReranker; returns queued results in order."""

    def __init__(self, result=None, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls = []

    async def rerank(self, student_summary, candidates):
        self.calls.append((student_summary, list(candidates)))
        if self.error is not None:
            raise self.error
        if callable(self.result):
            return self.result(student_summary, candidates)
        return self.result


def reverse_ranking(student_summary, candidates):
    ids = [c.id for c in reversed(candidates)]
    return RerankSuccess(ranking=ranking_for(ids), duration_ms=5.0)


class FakeLLMClient:
    """Minimal LLMClient replacement returning a canned reply."""

    def __init__(self, reply: str = "", error: Optional[Exception] = None, delay: float = 0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.prompts = []

    async def analyze_with_context(self, system_prompt, user_prompt, temperature=0.1, max_tokens=None):
        self.prompts.append((system_prompt, user_prompt))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def embedder():
    mock = AsyncMock()
    mock.embed.side_effect = lambda texts: [[0.1, 0.2, 0.3] for _ in texts]
    return mock


@pytest.fixture
def store():
    mock = AsyncMock()
    mock.top_k_by_embedding.return_value = make_rows(10)
    return mock


@pytest.fixture
def reranker():
    return FakeReranker(result=reverse_ranking)


@pytest.fixture
def cache():
    return TTLCache(max_entries=64)


@pytest.fixture
def telemetry():
    return TelemetrySink(capacity=200)


@pytest.fixture
def workflow(embedder, store, reranker, cache, telemetry):
    return MatchWorkflow(
        embedder=embedder,
        store=store,
        reranker=reranker,
        cache=cache,
        telemetry=telemetry,
    )


def events_for(telemetry: TelemetrySink, step: str):
    return [e for e in telemetry.get_recent(telemetry.capacity) if e.step == step]

