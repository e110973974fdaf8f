from typing import TypedDict, Optional, List

class Contact(TypedDict, total=False):
    """One company + key person row. Rows sharing ``lead_no`` form one lead."""
    id: int                          # contact row, or temporary negative id until confirmed
    contact_row: int
    company_row: int

    # company fields, shared by every row of the lead
    lead_no: str
    country: str
    sales_person: str
    intern_name: Optional[str]
    company: str
    import_value: Optional[str]
    total_import_value: Optional[str]
    website: Optional[str]
    company_linkedin: Optional[str]
    facebook: Optional[str]
    instagram: Optional[str]

    # person fields
    key_person: str
    designation: str
    number: str
    email: Optional[str]
    person_linkedin: Optional[str]

    verification: str               # "Verified" | "Not verified"
    next_follow_up_date: Optional[str]
    temp1: Optional[str]             # message templates
    temp2: Optional[str]
    status: str

class FollowUpLog(TypedDict, total=False):
    """Immutable activity log entry."""
    lead_no: str
    company: str
    key_person: str
    contact_number: Optional[str]
    sales_person: str
    timestamp: str                   # ISO-8601, UTC
    action: str
    details: str
    remarks: str
    proof_url: Optional[str]

class Snapshot(TypedDict):
    """Full dataset as last published. Never mutated in place."""
    contacts: List[Contact]
    follow_ups: List[FollowUpLog]

class User(TypedDict, total=False):
    user_row: int
    name: str
    role: str                        # "Sales Person" | "Intern" | "Admin"
    password: Optional[str]

class ProofFile(TypedDict):
    mime_type: str
    file_name: str
    base64_data: str

class Reminders(TypedDict):
    overdue: List[Contact]
    upcoming: List[Contact]

COMPANY_FIELDS = (
    "lead_no",
    "country",
    "sales_person",
    "intern_name",
    "company",
    "import_value",
    "total_import_value",
    "website",
    "company_linkedin",
    "facebook",
    "instagram",
)

def empty_snapshot() -> Snapshot:
    return {"contacts": [], "follow_ups": []}
