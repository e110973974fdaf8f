"""
Projections over the follow-up log.

The log is append-only and is the record of what happened to a lead, so the
current pipeline stage and the last action are always recomputed from it in
full rather than stored.
"""
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional, Iterable

from pipeline.constants import FRESH_STAGE, LEAD_CREATED, PIPELINE_STAGES, ROLE_INTERN, SYSTEM_AUTO_LOG
from pipeline.state import FollowUpLog

STAGE_ACTIONS = frozenset(PIPELINE_STAGES) | {LEAD_CREATED}

def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

def _sort_key(log: FollowUpLog) -> float:
    # unparseable timestamps sort first
    parsed = parse_timestamp(log.get("timestamp"))
    return parsed.timestamp() if parsed else float("-inf")

def pipeline_stages(logs: Iterable[FollowUpLog]) -> Dict[str, str]:
    """Current stage per lead: the latest "Lead Created" or pipeline-stage action.

    ``sorted`` is stable, so among equal timestamps the entry that comes later
    in ``logs`` is scanned later and wins.
    """
    stages: Dict[str, str] = {}
    for log in sorted(logs, key=_sort_key):
        lead_no = log.get("lead_no")
        if lead_no and log.get("action") in STAGE_ACTIONS:
            stages[lead_no] = log["action"]
    return stages

def stage_for(stages: Dict[str, str], lead_no: str) -> str:
    return stages.get(lead_no, FRESH_STAGE)

def last_actions(logs: Iterable[FollowUpLog]) -> Dict[str, FollowUpLog]:
    """Most recent log entry per lead, whatever its action."""
    latest: Dict[str, FollowUpLog] = {}
    for log in sorted(logs, key=_sort_key, reverse=True):
        lead_no = log.get("lead_no")
        if lead_no and lead_no not in latest:
            latest[lead_no] = log
    return latest

def lead_history(logs: Iterable[FollowUpLog], lead_no: str) -> List[FollowUpLog]:
    """Log entries of one lead, in log order."""
    wanted = (lead_no or "").strip()
    return [log for log in logs if (log.get("lead_no") or "").strip() == wanted]

# Remarks attribution

def intern_tag(intern_name: str) -> str:
    return f"(By Intern: {intern_name})"

def tag_remarks(remarks: str, user: str, role: Optional[str], leading: bool = False) -> str:
    """Attribute remarks to an intern so the owning sales person can tell them apart.

    System-generated remarks carry the tag in front, typed remarks at the end.
    """
    if role != ROLE_INTERN:
        return remarks
    tag = intern_tag(user)
    if not remarks:
        return tag
    return f"{tag} {remarks}" if leading else f"{remarks} {tag}"

def _name_pattern(intern_name: Optional[str]) -> str:
    if intern_name and intern_name.strip():
        return re.escape(intern_name.strip())
    return ""

def clean_remarks(remarks: Optional[str], intern_name: Optional[str] = None) -> Optional[str]:
    """Strip intern tags and the system auto-log marker for display.

    Without ``intern_name`` any tagged name is stripped.
    """
    if not remarks:
        return None
    pattern = re.compile(
        rf"\s*\((?:by|logged by) intern:\s*{_name_pattern(intern_name)}[^)]*\)|{re.escape(SYSTEM_AUTO_LOG)}",
        re.IGNORECASE,
    )
    cleaned = pattern.sub("", remarks).strip()
    return cleaned or None

def is_intern_activity(remarks: Optional[str], intern_name: str) -> bool:
    """Whether the remarks carry the attribution tag of ``intern_name``."""
    if not remarks or not intern_name:
        return False
    pattern = re.compile(rf"\(by intern:\s*{_name_pattern(intern_name)}\s*\)", re.IGNORECASE)
    return bool(pattern.search(remarks))
