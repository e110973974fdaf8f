from typing import TypedDict, Optional
from pipeline.state import Snapshot

class SyncState(TypedDict, total=False):
    """State shape for the snapshot load workflow."""
    force_loader: bool               # caller asked for the blocking loading indicator
    show_loader: bool                # indicator actually shown (never when cache hit)
    cached: Optional[Snapshot]       # snapshot served from the persisted cache
    fresh: Optional[Snapshot]        # snapshot fetched from the record store
    error: Optional[str]             # user-visible message of a failed fetch
    error_kind: Optional[str]        # "configuration" | "transport" | "remote" | "parse"
