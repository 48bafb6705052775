from typing_extensions import TypedDict
from typing import List, Optional

from .schemas import CandidateRow, EligibilityFilter


class MatchState(TypedDict, total=False):
    # Validated input
    summary: str
    k: int
    min_gpa: Optional[float]
    eligibility: Optional[EligibilityFilter]
    use_reranker: bool

    # Stage outputs
    embedding: List[float]
    rows: List[CandidateRow]

    # Stage timings (ms)
    embed_ms: float
    retrieve_ms: float
    rerank_ms: Optional[float]

    # Routing and processing info
    route: Optional[str]  # "rerank" or "end"
    skip_reason: Optional[str]
    used_reranker: bool
    cache_hit: bool
    rerank_error: Optional[str]

    # Fatal error handling
    failed_stage: Optional[str]  # "embed" or "retrieve"
    error: Optional[str]
