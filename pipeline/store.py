from typing import Any, Callable, Dict, List, Optional
from loguru import logger

from pipeline.projections import last_actions, pipeline_stages
from pipeline.state import Contact, FollowUpLog, Snapshot, empty_snapshot

class AppState:
    """State of one logged-in session: identity, current snapshot and load status.

    Snapshots are replaced, never edited. Every replacement bumps ``version``,
    which is what invalidates memoized projections.
    """

    def __init__(self):
        self.user: Optional[str] = None
        self.role: Optional[str] = None
        self.snapshot: Snapshot = empty_snapshot()
        self.version = 0
        self.is_loading = False
        self.error: Optional[str] = None
        self._derived: Dict[str, Any] = {}

    @property
    def contacts(self) -> List[Contact]:
        return self.snapshot["contacts"]

    @property
    def follow_ups(self) -> List[FollowUpLog]:
        return self.snapshot["follow_ups"]

    def publish(self, snapshot: Snapshot) -> None:
        """Replace the whole snapshot."""
        self.snapshot = {"contacts": snapshot["contacts"], "follow_ups": snapshot["follow_ups"]}
        self.version += 1
        self._derived.clear()

    def replace_contacts(self, contacts: List[Contact]) -> None:
        self.publish({"contacts": contacts, "follow_ups": self.follow_ups})

    def replace_follow_ups(self, follow_ups: List[FollowUpLog]) -> None:
        self.publish({"contacts": self.contacts, "follow_ups": follow_ups})

    def set_loading(self, loading: bool) -> None:
        self.is_loading = loading

    def fail(self, message: str) -> None:
        """Record a user-visible error."""
        logger.error(f"User-visible error: {message}")
        self.error = message

    def clear_error(self) -> None:
        self.error = None

    def reset(self) -> None:
        """Forget identity and data (logout)."""
        self.user = None
        self.role = None
        self.error = None
        self.is_loading = False
        self.publish(empty_snapshot())

    def derived(self, name: str, compute: Callable[[Snapshot], Any]) -> Any:
        """Memoize a projection of the current snapshot until the next publish."""
        if name not in self._derived:
            self._derived[name] = compute(self.snapshot)
        return self._derived[name]

    def stages(self) -> Dict[str, str]:
        return self.derived("stages", lambda snapshot: pipeline_stages(snapshot["follow_ups"]))

    def last_actions(self) -> Dict[str, FollowUpLog]:
        return self.derived("last_actions", lambda snapshot: last_actions(snapshot["follow_ups"]))
