from langgraph.graph import StateGraph, START, END

from scholar_match.core.cache import TTLCache
from scholar_match.core.telemetry import TelemetrySink
from .state import MatchState
from .nodes import decision_router_node, embed_node, rerank_node, retrieve_node
from .reranker import ScholarshipReranker


def build_graph(embedder, store, reranker: ScholarshipReranker, cache: TTLCache, telemetry: TelemetrySink):
    """Build the match LangGraph workflow: embed -> retrieve -> router -> (rerank)"""
    graph = StateGraph(MatchState)

    async def embed(state):
        return await embed_node(state, embedder, telemetry)

    async def retrieve(state):
        return await retrieve_node(state, store, telemetry)

    async def rerank(state):
        return await rerank_node(state, reranker, cache, telemetry)

    # Add nodes
    graph.add_node("embed", embed)
    graph.add_node("retrieve", retrieve)
    graph.add_node("router", decision_router_node)
    graph.add_node("rerank", rerank)

    # Fatal stages stop the graph as soon as they fail
    def continue_unless_failed(next_node):
        def route(state):
            return "end" if state.get("failed_stage") else next_node
        return route

    graph.add_edge(START, "embed")
    graph.add_conditional_edges(
        "embed",
        continue_unless_failed("retrieve"),
        {"retrieve": "retrieve", "end": END},
    )
    graph.add_conditional_edges(
        "retrieve",
        continue_unless_failed("router"),
        {"router": "router", "end": END},
    )
    graph.add_conditional_edges(
        "router",
        lambda state: state.get("route", "end"),
        {"rerank": "rerank", "end": END},
    )
    graph.add_edge("rerank", END)

    return graph.compile()
