"""Tests for the pgvector candidate store: SQL building and row handling."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from scholar_match.core.exceptions import RetrievalError
from scholar_match.core.pgvector_search import (
    PGVectorSearchService,
    build_top_k_query,
    row_to_candidate,
)
from scholar_match.match_agent.schemas import EligibilityFilter

from scholar_match.test.conftest import run

VECTOR = [0.1, 0.2, 0.3]


def db_row(i: int) -> dict:
    distance = -0.8 + i * 0.02
    return {
        "id": 100 + i,
        "name": f"Award {i}",
        "url": None,
        "min_gpa": None,
        "snippet": "Some text",
        "distance": distance,
        "dot_sim": -distance,
    }


class TestBuildTopKQuery:
    def test_no_filters(self):
        sql, params = build_top_k_query(VECTOR, 20)

        assert params == ["[0.1,0.2,0.3]", 20]
        assert "<#> $1::vector" in sql
        assert "LIMIT $2" in sql
        assert "ORDER BY e.embedding <#> $1::vector ASC" in sql
        assert "min_gpa <=" not in sql

    @pytest.mark.parametrize("k, expected", [(0, 1), (-3, 1), (1, 1), (50, 50), (500, 50)])
    def test_k_is_clamped(self, k, expected):
        _, params = build_top_k_query(VECTOR, k)
        assert params[-1] == expected

    def test_min_gpa_predicate(self):
        sql, params = build_top_k_query(VECTOR, 5, min_gpa=3.2)

        assert "(s.min_gpa IS NULL OR s.min_gpa <= $2)" in sql
        assert "LIMIT $3" in sql
        assert params[1:] == [3.2, 5]

    def test_all_eligibility_filters_in_order(self):
        eligibility = EligibilityFilter(
            country=" Canada ",
            levelOfStudy="undergraduate",
            fieldsOfStudy=["Computer Science", "  ", "Math"],
            citizenship="CA",
            hasFinancialNeed=False,
            gender="female",
        )

        sql, params = build_top_k_query(VECTOR, 10, min_gpa=3.0, eligibility=eligibility)

        assert params[1:] == [
            3.0,
            "Canada",
            "undergraduate",
            ["Computer Science", "Math"],
            "CA",
            False,
            "female",
            10,
        ]
        assert "lower(s.country) = lower($3)" in sql
        assert "unnest(s.level_of_study)" in sql
        assert "s.fields && $5::text[]" in sql
        assert "unnest(s.citizenship)" in sql
        assert "($7::boolean OR s.requires_financial_need IS NOT TRUE)" in sql
        assert "lower(s.gender) = lower($8)" in sql
        assert "LIMIT $9" in sql

    def test_blank_fields_list_is_skipped(self):
        eligibility = EligibilityFilter(fields_of_study=["", "   "])
        sql, params = build_top_k_query(VECTOR, 10, eligibility=eligibility)

        assert "s.fields" not in sql
        assert len(params) == 2

    def test_empty_eligibility_adds_nothing(self):
        sql_plain, params_plain = build_top_k_query(VECTOR, 10)
        sql, params = build_top_k_query(VECTOR, 10, eligibility=EligibilityFilter())

        assert sql == sql_plain
        assert params == params_plain

    def test_financial_need_true_is_bound(self):
        eligibility = EligibilityFilter(has_financial_need=True)
        _, params = build_top_k_query(VECTOR, 10, eligibility=eligibility)
        assert params[1] is True


class TestRowToCandidate:
    def test_ids_are_stringified(self):
        candidate = row_to_candidate({**db_row(1), "min_gpa": 3})
        assert candidate.id == "101"
        assert candidate.min_gpa == 3.0
        assert candidate.dot_sim == pytest.approx(-candidate.distance)
        assert candidate.score is None


class TestPGVectorSearchService:
    def test_returns_candidates_in_store_order(self):
        db = AsyncMock()
        db.fetch.return_value = [db_row(i) for i in range(3)]

        rows = run(PGVectorSearchService(db).top_k_by_embedding(VECTOR, 3))

        assert [r.id for r in rows] == ["100", "101", "102"]
        args = db.fetch.await_args.args
        assert args[1] == "[0.1,0.2,0.3]"
        assert args[-1] == 3

    def test_truncates_to_limit(self):
        db = AsyncMock()
        db.fetch.return_value = [db_row(i) for i in range(8)]

        rows = run(PGVectorSearchService(db).top_k_by_embedding(VECTOR, 5))

        assert len(rows) == 5

    def test_database_error_becomes_retrieval_error(self):
        db = AsyncMock()
        db.fetch.side_effect = ConnectionError("connection refused")

        with pytest.raises(RetrievalError) as exc_info:
            run(PGVectorSearchService(db).top_k_by_embedding(VECTOR, 5))

        assert exc_info.value.stage == "retrieve"
        assert "connection refused" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    def test_timeout_becomes_retrieval_error(self):
        async def slow_fetch(*args, **kwargs):
            await asyncio.sleep(0.5)
            return []

        db = AsyncMock()
        db.fetch.side_effect = slow_fetch

        with pytest.raises(RetrievalError, match="timed out"):
            run(PGVectorSearchService(db, timeout=0.05).top_k_by_embedding(VECTOR, 5))
