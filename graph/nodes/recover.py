from langchain_core.runnables import RunnableConfig
from graph.state import SyncState
from loguru import logger

async def recover(state: SyncState, config: RunnableConfig) -> SyncState:
    """Keep stale data when there is some, otherwise surface a blocking error."""
    app_state = config["configurable"]["app_state"]

    if state.get("cached") is not None:
        logger.warning(f"Failed to refresh data in the background, keeping cached snapshot: {state.get('error')}")
    else:
        app_state.fail(state.get("error") or "An unknown error occurred.")

    app_state.set_loading(False)
    return state
