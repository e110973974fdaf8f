from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pipeline.constants import FRESH_STAGE, LEAD_CREATED, PIPELINE_STAGES, ROLE_ADMIN, ROLE_INTERN, ROLE_SALES_PERSON
from pipeline.projections import clean_remarks, is_intern_activity, parse_timestamp, stage_for
from pipeline.reminders import parse_follow_up_date
from pipeline.state import Contact, FollowUpLog

STAGE_FILTERS = set(PIPELINE_STAGES) | {FRESH_STAGE, LEAD_CREATED}
TODAY_FILTER = "today"

def scoped_contacts(contacts: List[Contact], user: Optional[str], role: Optional[str], sales_person_filter: str = "") -> List[Contact]:
    """Contacts the user may see: admins everything, sales people their own, interns their assignments."""
    if role == ROLE_ADMIN:
        if sales_person_filter:
            return [c for c in contacts if c.get("sales_person") == sales_person_filter]
        return list(contacts)
    if role == ROLE_SALES_PERSON:
        return [c for c in contacts if c.get("sales_person") == user]
    if role == ROLE_INTERN:
        return [c for c in contacts if c.get("intern_name") == user]
    return []

def _is_due_on(contact: Contact, day: date) -> bool:
    return (contact.get("next_follow_up_date") or "").startswith(day.isoformat())

def filter_contacts(
    contacts: List[Contact],
    stages: Dict[str, str],
    today: date,
    search: str = "",
    country: str = "",
    company: str = "",
    active_filter: Optional[str] = None,
) -> List[Contact]:
    """
    Apply the dashboard filters.

    ``active_filter`` is a pipeline stage (including "Fresh" and "Lead Created"),
    "today" for follow-ups due today, or otherwise a status.
    """
    query = search.lower()
    result = []
    for contact in contacts:
        if country and contact.get("country") != country:
            continue
        if company and contact.get("company") != company:
            continue
        if query and not any(
            query in (contact.get(field) or "").lower()
            for field in ("company", "lead_no", "key_person")
        ):
            continue
        if active_filter:
            if active_filter in STAGE_FILTERS:
                if stage_for(stages, contact.get("lead_no", "")) != active_filter:
                    continue
            elif active_filter == TODAY_FILTER:
                if not _is_due_on(contact, today):
                    continue
            elif contact.get("status") != active_filter:
                continue
        result.append(contact)
    return result

def unique_leads(contacts: List[Contact]) -> List[Contact]:
    """First contact of each lead, in order."""
    seen = set()
    leads = []
    for contact in contacts:
        lead_no = contact.get("lead_no")
        if lead_no and lead_no not in seen:
            seen.add(lead_no)
            leads.append(contact)
    return leads

def todays_follow_up_count(contacts: List[Contact], user: Optional[str], role: Optional[str], today: date) -> int:
    if role not in (ROLE_SALES_PERSON, ROLE_INTERN):
        return 0
    return sum(1 for c in scoped_contacts(contacts, user, role) if _is_due_on(c, today))

def stage_counts(contacts: List[Contact], stages: Dict[str, str]) -> Dict[str, int]:
    """Number of leads at each stage, "Fresh" and "Lead Created" included."""
    counts = {stage: 0 for stage in [FRESH_STAGE, LEAD_CREATED] + PIPELINE_STAGES}
    for lead in unique_leads(contacts):
        counts[stage_for(stages, lead["lead_no"])] += 1
    return counts

def primary_sales_person(contacts: List[Contact], intern: str) -> Optional[str]:
    """Sales person owning most of an intern's assigned contacts."""
    owners = Counter(
        c["sales_person"] for c in contacts
        if c.get("intern_name") == intern and c.get("sales_person")
    )
    if not owners:
        return None
    return owners.most_common(1)[0][0]

def _sort_time(log: FollowUpLog) -> float:
    parsed = parse_timestamp(log.get("timestamp"))
    return parsed.timestamp() if parsed else float("-inf")

def team_activity(contacts: List[Contact], logs: List[FollowUpLog], sales_person: str, today: date) -> List[Dict[str, Any]]:
    """Per-intern statistics for a sales person's team.

    Intern activity is found through the attribution tag in the remarks.
    """
    own = [c for c in contacts if c.get("sales_person") == sales_person]
    interns = sorted({c["intern_name"] for c in own if c.get("intern_name")})
    month_ago = datetime.now(timezone.utc) - timedelta(days=30)

    team = []
    for intern in interns:
        assigned = [c for c in own if c.get("intern_name") == intern]
        activities = sorted(
            (
                log for log in logs
                if log.get("sales_person") == sales_person and is_intern_activity(log.get("remarks"), intern)
            ),
            key=_sort_time,
            reverse=True,
        )
        overdue = 0
        for c in assigned:
            when = parse_follow_up_date(c.get("next_follow_up_date"))
            if when and when.date() < today:
                overdue += 1
        recent = Counter(
            log["action"] for log in activities
            if (parse_timestamp(log.get("timestamp")) or month_ago) > month_ago
        )
        team.append({
            "name": intern,
            "assigned_leads": len({c.get("lead_no") for c in assigned}),
            "hot_leads": sum(1 for c in assigned if c.get("status") == "Hot"),
            "overdue_tasks": overdue,
            "last_activity": activities[0]["timestamp"] if activities else None,
            "activity_breakdown": [
                {"action": action, "count": count} for action, count in recent.most_common()
            ],
            "activities": [
                {**log, "remarks": clean_remarks(log.get("remarks"), intern)} for log in activities
            ],
        })
    return team

# Admin views

COMPARISON_WINDOWS = {"week": 7, "month": 30, "all": None}

def sales_persons(contacts: List[Contact]) -> List[str]:
    """Sales people owning at least one contact, sorted."""
    return sorted({c["sales_person"] for c in contacts if c.get("sales_person")})

def sales_person_overview(contacts: List[Contact], logs: List[FollowUpLog], stages: Dict[str, str]) -> List[Dict[str, Any]]:
    """
    Per-sales-person activity and pipeline totals for the admin overview.

    Rows are sorted by last activity, most recent first; people without
    any activity come last.
    """
    overview = []
    for person in sales_persons(contacts):
        activities = sorted(
            (log for log in logs if log.get("sales_person") == person),
            key=_sort_time,
            reverse=True,
        )
        own = [c for c in contacts if c.get("sales_person") == person]
        lead_nos = {c["lead_no"] for c in own if c.get("lead_no")}
        overview.append({
            "name": person,
            "last_activity": activities[0].get("timestamp") if activities else None,
            "previous_activity": activities[1].get("timestamp") if len(activities) > 1 else None,
            "lead_count": len(lead_nos),
            "activity_count": len(activities),
            "status_counts": dict(Counter(c.get("status") or "No Status" for c in own)),
            "pipeline_counts": dict(Counter(stage_for(stages, lead_no) for lead_no in sorted(lead_nos))),
        })
    overview.sort(key=lambda row: row["last_activity"] or "", reverse=True)
    return overview

def sales_person_comparison(contacts: List[Contact], logs: List[FollowUpLog], now: datetime, window: str = "month") -> List[Dict[str, Any]]:
    """Hot leads and recent meetings, calls and proposals per sales person.

    ``window`` is "week", "month" or "all". Rows are sorted by hot leads,
    then meetings.
    """
    if window not in COMPARISON_WINDOWS:
        raise ValueError(f"Unknown comparison window: {window}")
    days = COMPARISON_WINDOWS[window]
    since = now - timedelta(days=days) if days else None

    rows = []
    for person in sales_persons(contacts):
        actions = Counter()
        for log in logs:
            if log.get("sales_person") != person:
                continue
            if since is not None:
                when = parse_timestamp(log.get("timestamp"))
                if when is None or when < since:
                    continue
            actions[log.get("action")] += 1
        rows.append({
            "name": person,
            "hot_leads": sum(1 for c in contacts if c.get("sales_person") == person and c.get("status") == "Hot"),
            "meetings": actions["Meeting"],
            "calls": actions["Call"],
            "proposals": actions["Proposal"],
        })
    rows.sort(key=lambda row: (-row["hot_leads"], -row["meetings"]))
    return rows
