from langchain_core.runnables import RunnableConfig
from graph.state import SyncState
from tools.cache import SNAPSHOT_CACHE_KEY, snapshot_to_payload
from loguru import logger

async def publish(state: SyncState, config: RunnableConfig) -> SyncState:
    """Replace the local snapshot with the fetched one and write it back to the cache."""
    deps = config["configurable"]
    app_state = deps["app_state"]
    fresh = state["fresh"]

    app_state.publish(fresh)
    deps["cache"].set(SNAPSHOT_CACHE_KEY, snapshot_to_payload(fresh))
    app_state.set_loading(False)

    logger.info(f"Published fresh snapshot v{app_state.version}")
    return state
