# match_agent/schemas.py
from __future__ import annotations

from typing import List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, Field
from pydantic.config import ConfigDict

DEFAULT_K = 20
MIN_K = 1
MAX_K = 50


class EligibilityFilter(BaseModel):
    """Structured filter passed through to the candidate store."""
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    country: Optional[str] = None
    level_of_study: Optional[str] = Field(
        None, validation_alias=AliasChoices("level_of_study", "levelOfStudy")
    )
    fields_of_study: Optional[List[str]] = Field(
        None, validation_alias=AliasChoices("fields_of_study", "fieldsOfStudy")
    )
    citizenship: Optional[str] = None
    has_financial_need: Optional[bool] = Field(
        None, validation_alias=AliasChoices("has_financial_need", "hasFinancialNeed")
    )
    gender: Optional[str] = None


class MatchRequest(BaseModel):
    """
    Accepted match request. Frozen once built.

    student_summary is required but may still be blank here; blank summaries
    are rejected by the workflow before any external call.
    """
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    student_summary: str = Field(
        ...,
        description="Free-text summary of the student",
        validation_alias=AliasChoices("student_summary", "studentSummary"),
    )
    min_gpa: Optional[float] = Field(
        None, validation_alias=AliasChoices("min_gpa", "minGpa")
    )
    k: Optional[int] = Field(None, description="Result count, clamped to [1, 50]")
    use_reranker: bool = Field(
        True, validation_alias=AliasChoices("use_reranker", "useReranker")
    )
    eligibility: Optional[EligibilityFilter] = None


class CandidateRow(BaseModel):
    """
    One scholarship returned by the candidate store.

    distance is the raw pgvector negative inner product (lower = closer) and
    dot_sim its negation. score/rationale are only set after reranking.
    """
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    url: Optional[str] = None
    min_gpa: Optional[float] = None
    distance: float
    dot_sim: float
    score: Optional[float] = None
    rationale: Optional[str] = None
    snippet: Optional[str] = Field(None, exclude=True)


class RerankCandidate(BaseModel):
    """Lightweight projection sent to the LLM."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    name: str
    snippet: str = ""


class RankedScholarship(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    score: float = Field(..., ge=0.0, le=100.0)
    rationale: str


class RerankOutput(BaseModel):
    ranking: List[RankedScholarship] = Field(..., min_length=1)


class MatchMeta(BaseModel):
    usedReranker: bool
    totalMs: float
    embedMs: float
    retrieveMs: float
    rerankMs: Optional[float] = None


class MatchSuccess(BaseModel):
    ok: Literal[True] = True
    rows: List[CandidateRow]
    meta: MatchMeta


class MatchFailure(BaseModel):
    ok: Literal[False] = False
    error: str
    # validation -> 400, upstream -> 502; not part of the wire body
    kind: Literal["validation", "upstream", "internal"] = Field("upstream", exclude=True)


MatchResponse = Union[MatchSuccess, MatchFailure]


class RerankRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    student_summary: str = Field(
        ..., validation_alias=AliasChoices("student_summary", "studentSummary")
    )
    candidates: List[RerankCandidate] = Field(..., min_length=1)
    top_k: int = Field(
        DEFAULT_K, ge=MIN_K, le=MAX_K, validation_alias=AliasChoices("top_k", "topK")
    )


def clamp_k(k: Optional[int]) -> int:
    if k is None:
        return DEFAULT_K
    return max(MIN_K, min(MAX_K, int(k)))
