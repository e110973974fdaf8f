"""
Translation between the record store's wire format and the domain types.

The store reports rows keyed by sheet labels ("Lead-no", "Sales Person", ...)
and accepts writes keyed by camelCase field names. Neither spelling leaves
this module.
"""
import re
import time
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from loguru import logger

from pipeline.state import Contact, FollowUpLog, User

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# domain field -> camelCase key used on writes
CONTACT_WIRE_KEYS = {
    "id": "id",
    "contact_row": "contactRow",
    "company_row": "companyRow",
    "lead_no": "leadNo",
    "country": "country",
    "sales_person": "salesPerson",
    "intern_name": "internName",
    "company": "company",
    "import_value": "importValue",
    "total_import_value": "totalImportValue",
    "website": "website",
    "company_linkedin": "companyLinkedinPage",
    "facebook": "facebook",
    "instagram": "instagram",
    "key_person": "keyPerson",
    "designation": "designation",
    "number": "number",
    "email": "email",
    "person_linkedin": "personLinkedinPage",
    "verification": "verification",
    "next_follow_up_date": "nextFollowUpDate",
    "temp1": "tEMP1",
    "temp2": "tEMP2",
    "status": "status",
}

# domain field -> (sheet label, camelCase key)
LOG_WIRE_KEYS = {
    "lead_no": ("Lead-no", "leadNo"),
    "company": ("Company", "company"),
    "key_person": ("Key Person", "keyPerson"),
    "contact_number": ("Contact Number", "contactNumber"),
    "sales_person": ("Sales Person", "salesPerson"),
    "timestamp": ("Timestamp", "timestamp"),
    "action": ("Action", "action"),
    "details": ("Details", "details"),
    "remarks": ("Remarks", "remarks"),
    "proof_url": ("Proof URL", "proofUrl"),
}


def utc_now_iso() -> str:
    """Current instant as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def normalize_follow_up_date(value: Optional[str]) -> Optional[str]:
    """Turn a plain ``YYYY-MM-DD`` date into its UTC midnight timestamp.

    Anything else (empty, already a timestamp, unparseable) passes through.
    """
    if not value or not ISO_DATE_RE.match(value):
        return value
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        logger.error(f"Invalid follow-up date left unnormalized: {value}")
        return value
    return f"{value}T00:00:00.000Z"


def _text(value: Any, default: str = "") -> str:
    if value is None or value == "":
        return default
    return str(value)


def _optional(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def decode_contact(item: Dict[str, Any], index: int = 0, now_ms: Optional[int] = None) -> Contact:
    """Decode one label-keyed contact row from a fetch-all response."""
    contact_row = item.get("contactRow") or 0
    if not contact_row:
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return {
        "id": contact_row or -(now_ms + index),
        "contact_row": contact_row,
        "company_row": item.get("companyRow") or 0,
        "lead_no": _text(item.get("Lead-no")),
        "country": _text(item.get("Country")),
        "sales_person": _text(item.get("Sales Person")),
        "intern_name": _optional(item.get("Intern Name")),
        "company": _text(item.get("Company")),
        "import_value": _optional(item.get("Import Value in Mn $ (Chiansaw & Brushcutters)")),
        "total_import_value": _optional(item.get("Total Import Value ($)")),
        "website": _optional(item.get("Website")),
        "company_linkedin": _optional(item.get("Linkedin Page (Company)") or item.get("Linkedin Page")),
        "facebook": _optional(item.get("Facebook")),
        "instagram": _optional(item.get("Instagram")),
        "key_person": _text(item.get("Key Person")),
        "designation": _text(item.get("Designation")),
        "number": _text(item.get("Number")),
        "email": _optional(item.get("Email")),
        "person_linkedin": _optional(item.get("Linkedin Page (Person)")),
        "verification": _text(item.get("Verification"), "Not verified"),
        "next_follow_up_date": _optional(item.get("Next Follow-up Date")),
        "temp1": _optional(item.get("TEMP1")),
        "temp2": _optional(item.get("TEMP2")),
        "status": _text(item.get("Status")),
    }


def decode_log(log: Dict[str, Any]) -> FollowUpLog:
    """Decode a log from either the label-keyed or the camelCase spelling."""
    decoded: FollowUpLog = {}
    for field, (label, camel) in LOG_WIRE_KEYS.items():
        decoded[field] = log.get(label) or log.get(camel) or ""
    if not decoded["timestamp"]:
        decoded["timestamp"] = utc_now_iso()
    decoded["contact_number"] = _text(decoded["contact_number"])
    decoded["proof_url"] = _optional(decoded["proof_url"])
    return decoded


def decode_user(user: Dict[str, Any]) -> User:
    return {
        "user_row": user.get("userRow") or 0,
        "name": _text(user.get("name")),
        "role": _text(user.get("role")),
    }


def decode_snapshot(data: Any) -> Dict[str, List[Dict[str, Any]]]:
    """Decode the ``data`` member of a fetch-all response.

    Raises:
        ValueError: when the payload is not ``{contacts: [...], followUps: [...]}``
    """
    if not isinstance(data, dict):
        raise ValueError("fetch-all data is not an object")
    contacts = data.get("contacts")
    follow_ups = data.get("followUps")
    if not isinstance(contacts, list) or not isinstance(follow_ups, list):
        raise ValueError("fetch-all data lacks contacts and followUps arrays")
    if not all(isinstance(item, dict) for item in contacts + follow_ups):
        raise ValueError("fetch-all rows must be objects")
    now_ms = int(time.time() * 1000)
    return {
        "contacts": [decode_contact(item, index, now_ms) for index, item in enumerate(contacts)],
        "follow_ups": [decode_log(log) for log in follow_ups],
    }


def encode_contact(contact: Contact) -> Dict[str, Any]:
    """Encode a contact for ``updateContact``."""
    payload = {
        wire: contact.get(field)
        for field, wire in CONTACT_WIRE_KEYS.items()
        if field in contact
    }
    if "nextFollowUpDate" in payload:
        payload["nextFollowUpDate"] = normalize_follow_up_date(payload["nextFollowUpDate"])
    return payload


def encode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Encode a partial set of contact fields (new lead / new person forms)."""
    return {CONTACT_WIRE_KEYS[field]: value for field, value in fields.items() if field in CONTACT_WIRE_KEYS}


def encode_log(log: FollowUpLog) -> Dict[str, Any]:
    """Encode a log entry for ``logFollowUp``."""
    return {camel: log.get(field) for field, (_, camel) in LOG_WIRE_KEYS.items() if field in log}
