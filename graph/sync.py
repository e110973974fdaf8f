from langgraph.graph import StateGraph, START, END
from loguru import logger

from graph.state import SyncState
from graph.nodes.read_cache import read_cache
from graph.nodes.fetch_remote import fetch_remote
from graph.nodes.publish import publish
from graph.nodes.recover import recover
from pipeline.state import Snapshot

class SyncError(Exception):
    """Initial load failed and there was no cached snapshot to fall back on."""

    def __init__(self, message: str, kind: str = "transport"):
        super().__init__(message)
        self.kind = kind

def build_sync_workflow():
    """Build the stale-while-revalidate load workflow."""
    workflow = StateGraph(SyncState)

    workflow.add_node("read_cache", read_cache)
    workflow.add_node("fetch_remote", fetch_remote)
    workflow.add_node("publish", publish)
    workflow.add_node("recover", recover)

    workflow.add_edge(START, "read_cache")
    workflow.add_edge("read_cache", "fetch_remote")

    def branch_decision(state: SyncState) -> str:
        if state.get("fresh") is not None:
            return "publish"
        return "recover"

    workflow.add_conditional_edges(
        "fetch_remote",
        branch_decision,
        {"publish": "publish", "recover": "recover"},
    )

    workflow.add_edge("publish", END)
    workflow.add_edge("recover", END)

    return workflow.compile()

class SyncController:
    """Loads the snapshot: cache first, then a fresh fetch that replaces it."""

    def __init__(self, app_state, cache, record_store):
        self.app_state = app_state
        self.cache = cache
        self.record_store = record_store
        self.workflow = build_sync_workflow()

    async def load(self, force_show_loading_indicator: bool = True) -> Snapshot:
        """
        Publish the cached snapshot immediately, then refresh from the record store.

        Args:
            force_show_loading_indicator: Show the blocking indicator while fetching.
                Ignored when a cached snapshot is available.

        Returns:
            The snapshot published last

        Raises:
            SyncError: fetch failed and nothing was cached
        """
        result = await self.workflow.ainvoke(
            {"force_loader": force_show_loading_indicator},
            config={"configurable": {
                "app_state": self.app_state,
                "cache": self.cache,
                "record_store": self.record_store,
            }},
        )

        if result.get("fresh") is None and result.get("cached") is None:
            raise SyncError(result.get("error") or "An unknown error occurred.", result.get("error_kind") or "transport")

        logger.info(f"Load finished ({'fresh' if result.get('fresh') is not None else 'cached'} snapshot)")
        return self.app_state.snapshot
