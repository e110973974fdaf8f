ADMIN_USER = "Admin"

LEAD_CREATED = "Lead Created"
STATUS_CHANGED = "Status Changed"
FRESH_STAGE = "Fresh"

# Ordered milestones of the sales pipeline. Order is display order.
PIPELINE_STAGES = [
    "Call",
    "Intro Email",
    "LinkedIn",
    "Price List Shared",
    "Meeting",
    "Proposal",
    "Negotiation",
    "Order Received",
    "Payment Received",
]

QUICK_ACTION_GROUPS = {
    "Initial Contact": ["Call", "Intro Email", "LinkedIn"],
    "Engagement": ["Price List Shared", "Meeting", "Proposal"],
    "Closing": ["Negotiation", "Order Received", "Payment Received"],
    "Lead Status Update": ["Not Interested", "Deal Lost", "On Hold"],
    "General": ["Set Follow-up", "Add Note"],
}

# Follow-up actions that also overwrite the contact status
TERMINAL_STATUS_ACTIONS = ["Not Interested", "Deal Lost", "On Hold"]

# Actions that accept a proof attachment
PROOF_ACTIONS = ["Payment Received", "Order Received"]

STATUS_OPTIONS = ["Hot", "Warm", "Cold", "Not Interested", "Deal Lost", "On Hold"]

SYSTEM_AUTO_LOG = "System auto-log"
SOCIAL_CLICK_REMARK = "Clicked from social links"

# Session roles and the labels the record store uses for them
ROLE_SALES_PERSON = "salesPerson"
ROLE_INTERN = "intern"
ROLE_ADMIN = "admin"

ROLE_LABELS = {
    ROLE_SALES_PERSON: "Sales Person",
    ROLE_INTERN: "Intern",
    ROLE_ADMIN: "Admin",
}
