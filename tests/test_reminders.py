import os
import sys
from datetime import date

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pipeline.reminders import compute_reminders, parse_follow_up_date

TODAY = date(2024, 5, 10)

def _contact(contact_id, next_date, sales_person="Bob", intern_name=None):
    return {
        "id": contact_id,
        "lead_no": f"L-{contact_id}",
        "sales_person": sales_person,
        "intern_name": intern_name,
        "next_follow_up_date": next_date,
    }

class TestComputeReminders:
    """Overdue and upcoming follow-ups for one user."""

    def setup_method(self):
        self.yesterday = _contact(1, "2024-05-09")
        self.today = _contact(2, "2024-05-10")
        self.later = _contact(3, "2024-05-20")
        self.contacts = [self.later, self.today, self.yesterday]

    def test_overdue_and_upcoming_split(self):
        reminders = compute_reminders(self.contacts, "Bob", TODAY)

        assert reminders["overdue"] == [self.yesterday]
        assert reminders["upcoming"] == [self.today]

    def test_upcoming_window_is_inclusive(self):
        edge = _contact(4, "2024-05-17")
        past_edge = _contact(5, "2024-05-18")

        reminders = compute_reminders([past_edge, edge], "Bob", TODAY)

        assert reminders["upcoming"] == [edge]

    def test_sorted_ascending(self):
        first = _contact(6, "2024-05-01")
        second = _contact(7, "2024-05-05")
        soon = _contact(8, "2024-05-12T00:00:00.000Z")
        sooner = _contact(9, "2024-05-11")

        reminders = compute_reminders([second, soon, first, sooner], "Bob", TODAY)

        assert reminders["overdue"] == [first, second]
        assert reminders["upcoming"] == [sooner, soon]

    def test_other_users_contacts_excluded(self):
        reminders = compute_reminders(self.contacts + [_contact(10, "2024-05-09", "Carol")], "Bob", TODAY)

        assert [c["id"] for c in reminders["overdue"]] == [1]

    def test_empty_and_unparseable_dates_excluded(self):
        contacts = [_contact(11, None), _contact(12, ""), _contact(13, "next week")]

        assert compute_reminders(contacts, "Bob", TODAY) == {"overdue": [], "upcoming": []}

    def test_admin_gets_nothing(self):
        assert compute_reminders(self.contacts, "Admin", TODAY) == {"overdue": [], "upcoming": []}
        assert compute_reminders(self.contacts, "Bob", TODAY, role="admin") == {"overdue": [], "upcoming": []}

    def test_no_user_gets_nothing(self):
        assert compute_reminders(self.contacts, None, TODAY) == {"overdue": [], "upcoming": []}

    def test_intern_matched_on_assignment(self):
        assigned = _contact(14, "2024-05-11", intern_name="Ivy")

        reminders = compute_reminders(self.contacts + [assigned], "Ivy", TODAY, role="intern")

        assert reminders == {"overdue": [], "upcoming": [assigned]}

class TestParseFollowUpDate:

    def test_plain_date(self):
        parsed = parse_follow_up_date("2024-05-10")
        assert parsed.date() == TODAY

    def test_timestamp(self):
        assert parse_follow_up_date("2024-05-10T00:00:00.000Z").date() == TODAY

    def test_invalid(self):
        assert parse_follow_up_date("2024-13-45") is None
        assert parse_follow_up_date(None) is None
