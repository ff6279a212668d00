from __future__ import annotations

from langgraph.graph import END, StateGraph

from digest_agent.graph.state import RunState
from digest_agent.nodes.commit import commit_node
from digest_agent.nodes.ingest import ingest_node, route_after_ingest
from digest_agent.nodes.publish import publish_node
from digest_agent.nodes.summarize import summarize_node


def build_workflow():
    graph = StateGraph(RunState)

    graph.add_node("ingest", ingest_node)
    graph.add_node("summarize", summarize_node)
    graph.add_node("publish", publish_node)
    graph.add_node("commit", commit_node)

    graph.set_entry_point("ingest")
    graph.add_conditional_edges("ingest", route_after_ingest, {"summarize": "summarize", "done": END})
    graph.add_edge("summarize", "publish")
    graph.add_edge("publish", "commit")
    graph.add_edge("commit", END)

    return graph.compile()
