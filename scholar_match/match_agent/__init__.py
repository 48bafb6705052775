"""
Scholarship Match Agent Module

This module provides the core workflow orchestration for scholarship
matching, including embedding, vector retrieval, LLM reranking and the
rerank cache/telemetry plumbing around them.
"""

from .workflow import MatchWorkflow, create_match_workflow
from .schemas import CandidateRow, MatchRequest, MatchFailure, MatchSuccess
from .reranker import RerankFailure, RerankSuccess, ScholarshipReranker
from .llm_client import LLMClient

__all__ = [
    'MatchWorkflow',
    'create_match_workflow',
    'CandidateRow',
    'MatchRequest',
    'MatchFailure',
    'MatchSuccess',
    'RerankFailure',
    'RerankSuccess',
    'ScholarshipReranker',
    'LLMClient'
]
