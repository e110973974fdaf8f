"""
Optimistic mutations against the record store.

Every write follows the same shape: capture the pre-image of the collections
it touches, publish the changed snapshot right away, await the remote
call(s), and on any failure swap the pre-image back in and surface the error.
Snapshots are never edited in place, so the pre-image is just the list
references captured before the change.
"""
import asyncio
import time
from collections import Counter
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Dict, List, Optional
from loguru import logger

from pipeline.constants import (
    LEAD_CREATED,
    PROOF_ACTIONS,
    ROLE_INTERN,
    SOCIAL_CLICK_REMARK,
    STATUS_CHANGED,
    STATUS_OPTIONS,
    SYSTEM_AUTO_LOG,
    TERMINAL_STATUS_ACTIONS,
)
from pipeline.projections import tag_remarks
from pipeline.state import COMPANY_FIELDS, Contact, FollowUpLog, ProofFile
from pipeline.store import AppState
from tools.codec import utc_now_iso

TEMPLATE_FIELDS = ("temp1", "temp2")

class MutationError(Exception):
    """A mutation was rolled back. The message is meant for the user."""

class MutationCoordinator:
    """Applies every write optimistically and rolls it back when the store refuses it."""

    def __init__(self, app_state: AppState, record_store, sync_controller):
        self.app_state = app_state
        self.record_store = record_store
        self.sync_controller = sync_controller
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Counter = Counter()

    @asynccontextmanager
    async def _lead_lock(self, lead_no: str):
        # mutations on one lead are serialized so their pre-images never interleave;
        # a lock lives only while someone holds or awaits it
        key = lead_no or ""
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        lock = self._locks[key]
        self._lock_users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    def _require_user(self) -> str:
        if not self.app_state.user:
            raise MutationError("You must be logged in to make changes.")
        return self.app_state.user

    def _new_log(self, contact: Contact, action: str, details: str, remarks: str) -> FollowUpLog:
        """Build a log entry attributed the way the owning sales person expects."""
        user = self._require_user()
        sales_person = contact.get("sales_person") if self.app_state.role == ROLE_INTERN else user
        return {
            "lead_no": contact.get("lead_no", ""),
            "company": contact.get("company", ""),
            "key_person": contact.get("key_person", ""),
            "contact_number": contact.get("number", ""),
            "sales_person": sales_person or "",
            "timestamp": utc_now_iso(),
            "action": action,
            "details": details,
            "remarks": remarks,
        }

    def _system_remarks(self, text: str) -> str:
        return tag_remarks(text, self.app_state.user, self.app_state.role, leading=True)

    async def _commit(
        self,
        calls: List[Awaitable[Any]],
        failure: str,
        contacts: Optional[List[Contact]] = None,
        follow_ups: Optional[List[FollowUpLog]] = None,
    ) -> List[Any]:
        """
        Await the remote calls of one mutation together.

        Args:
            calls: Remote calls, run concurrently; all must succeed
            failure: Message used when the error itself carries none
            contacts: Contacts pre-image to restore on failure
            follow_ups: Logs pre-image to restore on failure

        Returns:
            Results of ``calls`` in order

        Raises:
            MutationError: after the pre-image has been restored
        """
        # every call runs to completion before the first failure is handled
        results = await asyncio.gather(*calls, return_exceptions=True)
        errors = [result for result in results if isinstance(result, BaseException)]
        if not errors:
            return list(results)
        for error in errors:
            if not isinstance(error, Exception):
                raise error
        for error in errors[1:]:
            logger.error(f"{failure} Concurrent call also failed: {error}")

        if contacts is not None and follow_ups is not None:
            self.app_state.publish({"contacts": contacts, "follow_ups": follow_ups})
        elif contacts is not None:
            self.app_state.replace_contacts(contacts)
        elif follow_ups is not None:
            self.app_state.replace_follow_ups(follow_ups)

        e = errors[0]
        message = str(e) or failure
        logger.error(f"{failure} Rolled back: {message}")
        self.app_state.fail(message)
        raise MutationError(message) from e

    def _swap_contact(self, contact_id: int, replacement: Contact) -> None:
        self.app_state.replace_contacts([
            replacement if c.get("id") == contact_id else c for c in self.app_state.contacts
        ])

    async def create_lead(self, company: Dict[str, Any], persons: List[Dict[str, Any]]) -> List[Contact]:
        """
        Create a lead: one company and one or more persons.

        Nothing is shown locally until the store has assigned the lead number;
        a create failure leaves the snapshot untouched and logs nothing.

        Args:
            company: Company fields
            persons: Person fields, one dict per key contact

        Returns:
            The new local contact rows (temporary negative ids)
        """
        user = self._require_user()
        if not persons:
            raise ValueError("A new lead needs at least one person")

        try:
            lead_no = await self.record_store.create_lead(company, persons)
        except Exception as e:
            message = str(e) or "Failed to save contact."
            logger.error(f"Lead creation failed: {message}")
            self.app_state.fail(message)
            raise MutationError(message) from e

        base_id = int(time.time() * 1000)
        rows: List[Contact] = [
            {
                **company,
                **person,
                "id": -(base_id + index),
                "lead_no": lead_no,
                "contact_row": 0,
                "company_row": 0,
                "verification": "Not verified",
                "status": "",
            }
            for index, person in enumerate(persons)
        ]
        creation_log = self._new_log(rows[0], LEAD_CREATED, "New lead added to the system.", self._system_remarks(SYSTEM_AUTO_LOG))

        pre_contacts, pre_logs = self.app_state.contacts, self.app_state.follow_ups
        self.app_state.publish({
            "contacts": pre_contacts + rows,
            "follow_ups": pre_logs + [creation_log],
        })
        logger.info(f"Lead {lead_no} created by {user} with {len(rows)} person(s)")

        await self._commit(
            [self.record_store.log_follow_up(creation_log)],
            "Failed to save contact.",
            contacts=pre_contacts,
            follow_ups=pre_logs,
        )
        return rows

    async def add_person(self, lead_contact: Contact, person: Dict[str, Any]):
        """Add a person to an existing lead, then reload: its row id is assigned by the store."""
        self._require_user()
        async with self._lead_lock(lead_contact.get("lead_no")):
            try:
                await self.record_store.create_person(lead_contact, person)
            except Exception as e:
                message = str(e) or "Failed to save contact."
                logger.error(f"Adding person to lead {lead_contact.get('lead_no')} failed: {message}")
                self.app_state.fail(message)
                raise MutationError(message) from e
        return await self.sync_controller.load(False)

    async def edit_person(self, contact: Contact, changes: Dict[str, Any]) -> Contact:
        """Replace one contact record."""
        self._require_user()
        async with self._lead_lock(contact.get("lead_no")):
            updated: Contact = {**contact, **changes, "id": contact["id"]}
            pre_contacts = self.app_state.contacts
            self._swap_contact(contact["id"], updated)

            await self._commit(
                [self.record_store.update_contact(updated)],
                "Failed to save contact.",
                contacts=pre_contacts,
            )
        return updated

    async def edit_company(self, contact: Contact, changes: Dict[str, Any]) -> List[Contact]:
        """Apply company fields to every contact of the lead; one update call carries them."""
        self._require_user()
        lead_no = contact.get("lead_no")
        company_changes = {
            field: value for field, value in changes.items()
            if field in COMPANY_FIELDS and field != "lead_no"
        }

        async with self._lead_lock(lead_no):
            pre_contacts = self.app_state.contacts
            self.app_state.replace_contacts([
                {**c, **company_changes} if c.get("lead_no") == lead_no else c
                for c in pre_contacts
            ])

            await self._commit(
                [self.record_store.update_contact({**contact, **company_changes})],
                "Failed to save contact.",
                contacts=pre_contacts,
            )
        return [c for c in self.app_state.contacts if c.get("lead_no") == lead_no]

    async def delete_person(self, contact: Contact) -> None:
        """Remove one person row."""
        self._require_user()
        async with self._lead_lock(contact.get("lead_no")):
            pre_contacts = self.app_state.contacts
            self.app_state.replace_contacts([c for c in pre_contacts if c.get("id") != contact["id"]])

            await self._commit(
                [self.record_store.delete_person(contact.get("contact_row"))],
                "Failed to delete contact.",
                contacts=pre_contacts,
            )
        logger.info(f"Deleted {contact.get('key_person')} from lead {contact.get('lead_no')}")

    async def change_status(self, contact: Contact, status: str) -> Contact:
        """
        Set a contact's status and log the change.

        The contact update and the log append run concurrently; if either fails
        both collections go back to their pre-images together.
        """
        if status and status not in STATUS_OPTIONS:
            raise ValueError(f"Unknown status: {status}")

        async with self._lead_lock(contact.get("lead_no")):
            updated: Contact = {**contact, "status": status}
            log = self._new_log(contact, STATUS_CHANGED, f"Status set to {status}", self._system_remarks(SYSTEM_AUTO_LOG))

            pre_contacts, pre_logs = self.app_state.contacts, self.app_state.follow_ups
            self.app_state.publish({
                "contacts": [updated if c.get("id") == contact["id"] else c for c in pre_contacts],
                "follow_ups": pre_logs + [log],
            })

            await self._commit(
                [self.record_store.update_contact(updated), self.record_store.log_follow_up(log)],
                "Failed to update status.",
                contacts=pre_contacts,
                follow_ups=pre_logs,
            )
        return updated

    async def log_follow_up(
        self,
        contact: Contact,
        action: str,
        details: str,
        remarks: str = "",
        next_follow_up_date: Optional[str] = None,
        template_id: Optional[str] = None,
        proof_file: Optional[ProofFile] = None,
    ) -> FollowUpLog:
        """
        Record a follow-up against a contact.

        Args:
            contact: Contact acted upon
            action: Action name, e.g. "Call" or "Deal Lost"
            details: What was done
            remarks: Free-text remarks; tagged when entered by an intern
            next_follow_up_date: New next follow-up date (``YYYY-MM-DD``)
            template_id: "temp1" or "temp2" to store ``remarks`` as that message template
            proof_file: Attachment for order/payment proof

        Returns:
            The log entry as finally held locally
        """
        if template_id and template_id not in TEMPLATE_FIELDS:
            raise ValueError(f"Unknown template: {template_id}")
        if proof_file and action not in PROOF_ACTIONS:
            raise ValueError(f"{action} does not take a proof attachment")

        async with self._lead_lock(contact.get("lead_no")):
            updated: Contact = {**contact, "next_follow_up_date": next_follow_up_date}
            if template_id:
                updated[template_id] = remarks
            if action in TERMINAL_STATUS_ACTIONS:
                updated["status"] = action

            log = self._new_log(
                contact,
                action,
                details,
                tag_remarks(remarks, self.app_state.user, self.app_state.role),
            )

            pre_contacts, pre_logs = self.app_state.contacts, self.app_state.follow_ups
            self.app_state.publish({
                "contacts": [updated if c.get("id") == contact["id"] else c for c in pre_contacts],
                "follow_ups": pre_logs + [log],
            })

            stored, _ = await self._commit(
                [
                    self.record_store.log_follow_up(log, next_follow_up_date=next_follow_up_date, proof_file=proof_file),
                    self.record_store.update_contact(updated),
                ],
                "Failed to save follow-up.",
                contacts=pre_contacts,
                follow_ups=pre_logs,
            )
            return self._reconcile_log(log, stored)

    async def quick_action(self, contact: Contact, action: str, remarks: str = "", **kwargs) -> FollowUpLog:
        """A predefined action logged with minimal input."""
        return await self.log_follow_up(contact, action, f"Quick Action: {action}", remarks, **kwargs)

    def _reconcile_log(self, local: FollowUpLog, stored: Optional[FollowUpLog]) -> FollowUpLog:
        """Adopt the proof URL the store assigned to an uploaded attachment."""
        if not stored or not stored.get("proof_url"):
            return local
        confirmed: FollowUpLog = {**local, "proof_url": stored["proof_url"]}
        self.app_state.replace_follow_ups([
            confirmed if log is local else log for log in self.app_state.follow_ups
        ])
        return confirmed

    async def log_social_click(self, contact: Contact, action: str, details: str) -> FollowUpLog:
        """Log a click on one of the contact's social channels. Contacts are untouched."""
        log = self._new_log(contact, action, details, self._system_remarks(SOCIAL_CLICK_REMARK))

        pre_logs = self.app_state.follow_ups
        self.app_state.replace_follow_ups(pre_logs + [log])

        await self._commit(
            [self.record_store.log_follow_up(log)],
            "Failed to log action.",
            follow_ups=pre_logs,
        )
        return log

    async def log_whatsapp_message(self, contact: Contact, message: str, template_id: Optional[str] = None) -> FollowUpLog:
        """Log a WhatsApp message sent from a template or typed by hand."""
        if template_id:
            details = f"Sent template: {template_id}"
        else:
            details = f'Sent manual message: "{message[:50]}..."'
        return await self.log_social_click(contact, "WhatsApp Message Sent", details)
