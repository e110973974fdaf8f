from langchain_core.runnables import RunnableConfig
from graph.state import SyncState
from tools.cache import SNAPSHOT_CACHE_KEY, payload_to_snapshot
from loguru import logger

async def read_cache(state: SyncState, config: RunnableConfig) -> SyncState:
    """Publish the cached snapshot, if any, before the network is touched."""
    deps = config["configurable"]
    app_state = deps["app_state"]

    payload = deps["cache"].get(SNAPSHOT_CACHE_KEY)
    state["show_loader"] = state.get("force_loader", True)
    state["cached"] = None

    if payload:
        cached = payload_to_snapshot(payload)
        app_state.publish(cached)
        state["cached"] = cached
        # no blocking indicator over cached data
        state["show_loader"] = False
        logger.info(f"Serving {len(cached['contacts'])} cached contacts while refreshing")

    if state["show_loader"]:
        app_state.set_loading(True)
    app_state.clear_error()
    return state
