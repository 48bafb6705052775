import asyncio
import logging
from typing import Any, List, Optional, Sequence, Tuple

from scholar_match.config.logging_config import log_execution_time
from scholar_match.core.exceptions import RetrievalError
from scholar_match.database.postgresql import PostgreSQLManager
from scholar_match.match_agent.schemas import (
    MAX_K,
    MIN_K,
    CandidateRow,
    EligibilityFilter,
)

logger = logging.getLogger(__name__)

SNIPPET_CHARS = 280


def _vector_literal(vector: Sequence[float]) -> str:
    return "[" + ",".join(str(float(x)) for x in vector) + "]"


def build_top_k_query(
    vector: Sequence[float],
    k: int,
    min_gpa: Optional[float] = None,
    eligibility: Optional[EligibilityFilter] = None,
) -> Tuple[str, List[Any]]:
    """
    Build the nearest-neighbour SQL over scholarships.

    Uses pgvector negative inner product (<#>): distance ascending is
    closest first and dot_sim = -distance. Each filter is a conjunctive
    predicate that is only added when its value is present. A NULL column on
    the scholarship side means the scholarship is unrestricted on that axis.
    """
    k = max(MIN_K, min(MAX_K, int(k)))

    base_query = f"""
        SELECT
            s.id,
            s.name,
            s.url,
            s.min_gpa,
            left(s.raw_text, {SNIPPET_CHARS}) AS snippet,
            (e.embedding <#> $1::vector) AS distance,
            -(e.embedding <#> $1::vector) AS dot_sim
        FROM scholarships s
        JOIN scholarship_embeddings e ON e.scholarship_id = s.id
        WHERE TRUE
    """

    query_params: List[Any] = [_vector_literal(vector)]
    param_counter = 2

    # GPA: keep scholarships the student plausibly qualifies for
    if min_gpa is not None:
        base_query += f" AND (s.min_gpa IS NULL OR s.min_gpa <= ${param_counter})"
        query_params.append(float(min_gpa))
        param_counter += 1

    if eligibility is not None:
        if eligibility.country:
            base_query += f" AND (s.country IS NULL OR lower(s.country) = lower(${param_counter}))"
            query_params.append(eligibility.country.strip())
            param_counter += 1

        if eligibility.level_of_study:
            base_query += (
                f" AND (s.level_of_study IS NULL OR EXISTS ("
                f"SELECT 1 FROM unnest(s.level_of_study) AS lvl WHERE lower(lvl) = lower(${param_counter})))"
            )
            query_params.append(eligibility.level_of_study.strip())
            param_counter += 1

        fields = [f.strip() for f in (eligibility.fields_of_study or []) if f and f.strip()]
        if fields:
            base_query += f" AND (s.fields IS NULL OR s.fields && ${param_counter}::text[])"
            query_params.append(fields)
            param_counter += 1

        if eligibility.citizenship:
            base_query += (
                f" AND (s.citizenship IS NULL OR EXISTS ("
                f"SELECT 1 FROM unnest(s.citizenship) AS cit WHERE lower(cit) = lower(${param_counter})))"
            )
            query_params.append(eligibility.citizenship.strip())
            param_counter += 1

        # Students without need never see need-based awards
        if eligibility.has_financial_need is not None:
            base_query += f" AND (${param_counter}::boolean OR s.requires_financial_need IS NOT TRUE)"
            query_params.append(bool(eligibility.has_financial_need))
            param_counter += 1

        if eligibility.gender:
            base_query += f" AND (s.gender IS NULL OR lower(s.gender) = lower(${param_counter}))"
            query_params.append(eligibility.gender.strip())
            param_counter += 1

    base_query += f"""
        ORDER BY e.embedding <#> $1::vector ASC
        LIMIT ${param_counter}
    """
    query_params.append(k)

    return base_query, query_params


def row_to_candidate(row) -> CandidateRow:
    return CandidateRow(
        id=str(row["id"]),
        name=row["name"],
        url=row["url"],
        min_gpa=float(row["min_gpa"]) if row["min_gpa"] is not None else None,
        distance=float(row["distance"]),
        dot_sim=float(row["dot_sim"]),
        snippet=row["snippet"],
    )


class PGVectorSearchService:
    def __init__(self, db: PostgreSQLManager, timeout: float = 10.0):
        self.db = db
        self.timeout = timeout

    @log_execution_time(logger)
    async def top_k_by_embedding(
        self,
        vector: Sequence[float],
        k: int,
        min_gpa: Optional[float] = None,
        eligibility: Optional[EligibilityFilter] = None,
    ) -> List[CandidateRow]:
        """Return at most k scholarships ordered closest first."""
        query, params = build_top_k_query(vector, k, min_gpa, eligibility)
        limit = params[-1]

        try:
            rows = await asyncio.wait_for(
                self.db.fetch(query, *params, timeout=self.timeout),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise RetrievalError(f"Scholarship search timed out after {self.timeout}s") from e
        except Exception as e:
            raise RetrievalError(f"Scholarship search failed: {str(e)}") from e

        candidates = [row_to_candidate(row) for row in rows[:limit]]
        logger.debug(f"{len(candidates)} candidates found")
        return candidates
