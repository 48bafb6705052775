"""Error taxonomy for the match pipeline.

Fatal upstream errors (embedding, retrieval) end a request with ``ok: false``.
Degradable errors (reranking) are recovered by falling back to vector order.
Input validation problems are not raised; the workflow answers them directly.
"""


class ScholarMatchError(Exception):
    """Base class for all scholar_match errors."""


class FatalUpstreamError(ScholarMatchError):
    """An essential stage failed and no ranking can be produced."""

    stage = "upstream"


class EmbeddingError(FatalUpstreamError):
    stage = "embed"


class RetrievalError(FatalUpstreamError):
    stage = "retrieve"


class DegradableUpstreamError(ScholarMatchError):
    """An enhancement stage failed; callers fall back instead of failing."""


class RerankContractError(DegradableUpstreamError):
    """Reranker output parsed but broke the one-entry-per-candidate contract."""
