from langchain_core.runnables import RunnableConfig
from graph.state import SyncState
from tools.errors import RecordStoreError, ConfigurationError, RemoteError, ParseError
from loguru import logger

def _error_kind(error: RecordStoreError) -> str:
    if isinstance(error, ConfigurationError):
        return "configuration"
    if isinstance(error, ParseError):
        return "parse"
    if isinstance(error, RemoteError):
        return "remote"
    return "transport"

async def fetch_remote(state: SyncState, config: RunnableConfig) -> SyncState:
    """Always fetch a fresh snapshot, whether or not the cache answered."""
    client = config["configurable"]["record_store"]

    try:
        state["fresh"] = await client.fetch_all()
        state["error"] = None
        state["error_kind"] = None
    except RecordStoreError as e:
        logger.error(f"Snapshot fetch failed: {e}")
        state["fresh"] = None
        state["error"] = str(e) or "Could not fetch data. Check the record store endpoint and the network connection."
        state["error_kind"] = _error_kind(e)

    return state
