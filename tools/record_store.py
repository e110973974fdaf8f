import httpx
import os
from typing import Dict, Any, Optional, List
from loguru import logger

from pipeline.state import Contact, FollowUpLog, Snapshot, User, ProofFile
from tools.codec import (
    decode_log,
    decode_snapshot,
    decode_user,
    encode_contact,
    encode_fields,
    encode_log,
    normalize_follow_up_date,
)
from tools.errors import ConfigurationError, TransportError, RemoteError, ParseError

class RecordStoreClient:
    """Client for the remote record store (single action-discriminated endpoint)."""

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url if url is not None else os.getenv("RECORD_STORE_URL", "")
        self.timeout = timeout if timeout is not None else float(os.getenv("RECORD_STORE_TIMEOUT", "30"))
        self.transport = transport

        if not self.url:
            logger.warning("No RECORD_STORE_URL configured, data operations will fail")

    def _endpoint(self) -> str:
        """Validated endpoint URL."""
        if not self.url or not self.url.startswith("https://"):
            raise ConfigurationError(
                "Configuration Error: the record store URL (RECORD_STORE_URL) is missing or "
                "invalid. Make sure it is set to the deployed https:// endpoint."
            )
        return self.url

    def _get_headers(self) -> Dict[str, str]:
        # the remote script only accepts simple requests, so JSON goes out as text/plain
        return {"Content-Type": "text/plain;charset=utf-8"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport, follow_redirects=True)

    def _parse(self, response: httpx.Response) -> Dict[str, Any]:
        """Unwrap the ``{status, message, data}`` envelope."""
        try:
            result = response.json()
        except ValueError as e:
            logger.error(f"Record store returned a non-JSON body: {response.text[:200]}")
            raise ParseError(str(e)) from e

        if not isinstance(result, dict):
            raise ParseError("response is not an object")

        status = result.get("status")
        if status == "error":
            raise RemoteError(result.get("message") or "The record store operation failed.")
        if status != "success":
            raise ParseError(f"unexpected response status: {status!r}")
        return result

    async def fetch_all(self) -> Snapshot:
        """
        Fetch every contact and follow-up log.

        Returns:
            Snapshot with decoded contacts and logs

        Raises:
            ConfigurationError, TransportError, RemoteError, ParseError
        """
        url = self._endpoint()
        try:
            async with self._client() as client:
                response = await client.get(url, params={"action": "getInitialData"})
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Fetch-all request failed: {e}")
            raise TransportError(
                f"Connection to the record store failed ({e}). Check the network connection, "
                "the RECORD_STORE_URL setting and that the remote script is deployed with public access."
            ) from e

        result = self._parse(response)
        try:
            snapshot = decode_snapshot(result.get("data"))
        except ValueError as e:
            raise ParseError(str(e)) from e

        logger.info(f"Fetched {len(snapshot['contacts'])} contacts and {len(snapshot['follow_ups'])} logs")
        return snapshot

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST one action to the store and return the unwrapped envelope."""
        url = self._endpoint()
        action = payload.get("action")
        try:
            async with self._client() as client:
                response = await client.post(url, headers=self._get_headers(), json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Record store action {action} failed: {e}")
            raise TransportError(f"Could not save data to the record store. Reason: {e}") from e

        result = self._parse(response)
        logger.debug(f"Record store action {action} succeeded")
        return result

    async def create_lead(self, company: Dict[str, Any], persons: List[Dict[str, Any]]) -> str:
        """
        Create a lead with one company and one or more persons.

        Returns:
            Server-assigned lead number
        """
        result = await self._post({
            "action": "saveContact",
            "mode": "new-lead",
            "contactData": {
                "companyData": encode_fields(company),
                "personsData": [encode_fields(person) for person in persons],
            },
        })
        lead_no = (result.get("data") or {}).get("newLeadNo")
        if not lead_no:
            raise RemoteError("Failed to get new Lead-no from the record store.")
        return str(lead_no)

    async def create_person(self, lead_contact: Contact, person: Dict[str, Any]) -> Dict[str, Any]:
        """Add a person row to an existing lead."""
        return await self._post({
            "action": "saveContact",
            "mode": "new-person",
            "contactData": encode_fields(person),
            "leadNo": lead_contact.get("lead_no"),
            "companyName": lead_contact.get("company"),
        })

    async def update_contact(self, contact: Contact) -> Dict[str, Any]:
        return await self._post({"action": "updateContact", "contactData": encode_contact(contact)})

    async def delete_person(self, contact_row: int) -> Dict[str, Any]:
        return await self._post({"action": "deletePerson", "contactRow": contact_row})

    async def log_follow_up(self, log: FollowUpLog, next_follow_up_date: Optional[str] = None, proof_file: Optional[ProofFile] = None) -> Optional[FollowUpLog]:
        """
        Append a log entry.

        Args:
            log: Entry to append
            next_follow_up_date: Follow-up date recorded alongside the entry
            proof_file: Optional attachment uploaded with the entry

        Returns:
            The stored entry (with ``proof_url``) when the store echoes it
        """
        log_data = encode_log(log)
        if next_follow_up_date:
            log_data["nextFollowUpDate"] = normalize_follow_up_date(next_follow_up_date)
        if proof_file:
            log_data["proofFile"] = {
                "mimeType": proof_file["mime_type"],
                "fileName": proof_file["file_name"],
                "base64Data": proof_file["base64_data"],
            }

        result = await self._post({"action": "logFollowUp", "logData": log_data})
        data = result.get("data")
        return decode_log(data) if isinstance(data, dict) else None

    async def list_users(self) -> List[User]:
        result = await self._post({"action": "getUsers"})
        data = result.get("data")
        if not isinstance(data, list):
            raise ParseError("user list is not an array")
        return [decode_user(user) for user in data]

    async def login_options(self) -> Dict[str, List[str]]:
        """User names for the login screen, split by role."""
        users = await self.list_users()
        sales_persons = sorted(user["name"] for user in users if user["role"] == "Sales Person")
        interns = sorted(user["name"] for user in users if user["role"] == "Intern")
        return {"sales_persons": sales_persons, "interns": interns}

    async def authenticate(self, name: str, password: str, role: str) -> Dict[str, Any]:
        """Check credentials. ``role`` is the store's label ("Sales Person", "Intern", "Admin")."""
        return await self._post({"action": "login", "name": name, "password": password, "role": role})

    async def add_user(self, user: User) -> Dict[str, Any]:
        user_data = {"name": user.get("name"), "role": user.get("role")}
        if user.get("password"):
            user_data["password"] = user["password"]
        return await self._post({"action": "addUser", "userData": user_data})

    async def update_user(self, user: User) -> Dict[str, Any]:
        user_data = {"userRow": user.get("user_row"), "name": user.get("name"), "role": user.get("role")}
        if user.get("password"):
            user_data["password"] = user["password"]
        return await self._post({"action": "updateUser", "userData": user_data})

    async def delete_user(self, user_row: int) -> Dict[str, Any]:
        return await self._post({"action": "deleteUser", "userRow": user_row})
