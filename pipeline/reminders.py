from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Tuple
from loguru import logger

from pipeline.constants import ADMIN_USER, ROLE_ADMIN, ROLE_INTERN
from pipeline.projections import parse_timestamp
from pipeline.state import Contact, Reminders

UPCOMING_WINDOW_DAYS = 7

def parse_follow_up_date(value: Optional[str]) -> Optional[datetime]:
    """Parse ``YYYY-MM-DD`` or a full timestamp into an aware UTC datetime."""
    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        pass
    parsed = parse_timestamp(value)
    return parsed.astimezone(timezone.utc) if parsed else None

def _belongs_to(contact: Contact, user: str, role: Optional[str]) -> bool:
    if role == ROLE_INTERN:
        return contact.get("intern_name") == user
    return contact.get("sales_person") == user

def compute_reminders(contacts: List[Contact], user: Optional[str], today: date, role: Optional[str] = None) -> Reminders:
    """
    Split a user's follow-ups into overdue and upcoming.

    Args:
        contacts: All contacts of the snapshot
        user: Acting user name
        today: Current local date
        role: Session role; interns are matched on their assignments

    Returns:
        ``overdue`` (date before today) and ``upcoming`` (today up to
        today + 7 days, inclusive), each sorted by date
    """
    if not user or user == ADMIN_USER or role == ROLE_ADMIN:
        return {"overdue": [], "upcoming": []}

    horizon = today + timedelta(days=UPCOMING_WINDOW_DAYS)
    overdue: List[Tuple[datetime, Contact]] = []
    upcoming: List[Tuple[datetime, Contact]] = []

    for contact in contacts:
        if not _belongs_to(contact, user, role) or not contact.get("next_follow_up_date"):
            continue
        when = parse_follow_up_date(contact["next_follow_up_date"])
        if when is None:
            logger.debug(f"Skipping unparseable follow-up date on contact {contact.get('id')}")
            continue
        day = when.date()
        if day < today:
            overdue.append((when, contact))
        elif day <= horizon:
            upcoming.append((when, contact))

    overdue.sort(key=lambda pair: pair[0])
    upcoming.sort(key=lambda pair: pair[0])
    return {
        "overdue": [contact for _, contact in overdue],
        "upcoming": [contact for _, contact in upcoming],
    }
