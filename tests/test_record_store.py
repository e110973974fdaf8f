import json
import os
import sys
import httpx
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tools.codec import decode_contact, decode_log, encode_contact, normalize_follow_up_date, utc_now_iso
from tools.errors import ConfigurationError, ParseError, RemoteError, TransportError
from tools.record_store import RecordStoreClient

ENDPOINT = "https://script.example.com/macros/s/abc/exec"

CONTACT_ROW = {
    "contactRow": 7,
    "companyRow": 3,
    "Lead-no": "L-100",
    "Country": "India",
    "Sales Person": "Bob",
    "Intern Name": "Ivy",
    "Company": "Acme",
    "Linkedin Page (Company)": "https://linkedin.com/company/acme",
    "Key Person": "Jane",
    "Designation": "Buyer",
    "Number": 919800000000,
    "Next Follow-up Date": "2024-05-12",
    "TEMP1": "Hello Jane",
    "Status": "Hot",
}

LOG_ROW = {
    "Lead-no": "L-100",
    "Company": "Acme",
    "Key Person": "Jane",
    "Sales Person": "Bob",
    "Timestamp": "2024-05-01T10:00:00.000Z",
    "Action": "Call",
    "Details": "Intro call",
    "Remarks": "Interested",
}

def _client(handler, url=ENDPOINT):
    return RecordStoreClient(url=url, timeout=5, transport=httpx.MockTransport(handler))

def _json(body, status_code=200):
    return lambda request: httpx.Response(status_code, json=body)

class TestCodec:
    """Wire format translation."""

    def test_decode_contact_label_keys(self):
        contact = decode_contact(CONTACT_ROW)

        assert contact["id"] == 7
        assert contact["lead_no"] == "L-100"
        assert contact["sales_person"] == "Bob"
        assert contact["intern_name"] == "Ivy"
        assert contact["company_linkedin"] == "https://linkedin.com/company/acme"
        assert contact["number"] == "919800000000"
        assert contact["next_follow_up_date"] == "2024-05-12"
        assert contact["temp1"] == "Hello Jane"
        assert contact["verification"] == "Not verified"
        assert contact["email"] is None

    def test_contact_without_row_gets_negative_id(self):
        first = decode_contact({"Lead-no": "L-1"}, index=0, now_ms=1000)
        second = decode_contact({"Lead-no": "L-1"}, index=1, now_ms=1000)

        assert first["id"] == -1000
        assert second["id"] == -1001

    def test_decode_log_either_spelling(self):
        camel = decode_log({"leadNo": "L-100", "action": "Call", "timestamp": "2024-05-01T10:00:00.000Z"})
        labelled = decode_log(LOG_ROW)

        assert camel["lead_no"] == labelled["lead_no"] == "L-100"
        assert camel["action"] == labelled["action"] == "Call"
        assert labelled["proof_url"] is None

    @pytest.mark.parametrize("value,expected", [
        ("2024-05-12", "2024-05-12T00:00:00.000Z"),
        ("2024-05-12T09:30:00.000Z", "2024-05-12T09:30:00.000Z"),
        ("2024-02-30", "2024-02-30"),
        ("", ""),
        (None, None),
    ])
    def test_normalize_follow_up_date(self, value, expected):
        assert normalize_follow_up_date(value) == expected

    def test_encode_contact_uses_camel_case(self):
        payload = encode_contact({"id": 7, "lead_no": "L-100", "company_linkedin": "x", "temp2": "Hi", "next_follow_up_date": "2024-05-12"})

        assert payload == {
            "id": 7,
            "leadNo": "L-100",
            "companyLinkedinPage": "x",
            "tEMP2": "Hi",
            "nextFollowUpDate": "2024-05-12T00:00:00.000Z",
        }

    def test_utc_now_iso_format(self):
        now = utc_now_iso()

        assert now.endswith("Z")
        assert len(now) == len("2024-05-01T10:00:00.000Z")

class TestRecordStoreClient:
    """Record store requests and error taxonomy."""

    @pytest.mark.asyncio
    async def test_fetch_all_decodes_snapshot(self):
        def handler(request):
            assert request.method == "GET"
            assert request.url.params["action"] == "getInitialData"
            return httpx.Response(200, json={"status": "success", "data": {"contacts": [CONTACT_ROW], "followUps": [LOG_ROW]}})

        snapshot = await _client(handler).fetch_all()

        assert snapshot["contacts"][0]["key_person"] == "Jane"
        assert snapshot["follow_ups"][0]["details"] == "Intro call"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["", "http://script.example.com/exec", "not a url"])
    async def test_configuration_error_before_io(self, url):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"status": "success"})

        with pytest.raises(ConfigurationError):
            await _client(handler, url=url).fetch_all()
        assert calls == []

    @pytest.mark.asyncio
    async def test_non_json_body_is_parse_error(self):
        client = _client(lambda request: httpx.Response(200, text="<html>Sign in</html>"))

        with pytest.raises(ParseError) as exc_info:
            await client.fetch_all()
        assert "deploy" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_wrong_shape_is_parse_error(self):
        client = _client(_json({"status": "success", "data": {"contacts": "nope"}}))

        with pytest.raises(ParseError):
            await client.fetch_all()

    @pytest.mark.asyncio
    async def test_status_error_is_remote_error(self):
        client = _client(_json({"status": "error", "message": "Sheet not found"}))

        with pytest.raises(RemoteError, match="Sheet not found"):
            await client.fetch_all()

    @pytest.mark.asyncio
    async def test_http_failure_is_transport_error(self):
        client = _client(_json({"status": "error"}, status_code=500))

        with pytest.raises(TransportError):
            await client.update_contact({"id": 7})

    @pytest.mark.asyncio
    async def test_connection_failure_is_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("Name or service not known", request=request)

        with pytest.raises(TransportError):
            await _client(handler).fetch_all()

    @pytest.mark.asyncio
    async def test_post_sends_action_as_text_plain(self):
        seen = {}

        def handler(request):
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "success"})

        await _client(handler).delete_person(7)

        assert seen["content_type"].startswith("text/plain")
        assert seen["body"] == {"action": "deletePerson", "contactRow": 7}

    @pytest.mark.asyncio
    async def test_create_lead_returns_lead_number(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "success", "data": {"newLeadNo": "L-101"}})

        lead_no = await _client(handler).create_lead({"company": "Acme", "sales_person": "Bob"}, [{"key_person": "Jane"}])

        assert lead_no == "L-101"
        assert seen["body"]["mode"] == "new-lead"
        assert seen["body"]["contactData"]["companyData"] == {"company": "Acme", "salesPerson": "Bob"}
        assert seen["body"]["contactData"]["personsData"] == [{"keyPerson": "Jane"}]

    @pytest.mark.asyncio
    async def test_create_lead_without_number_fails(self):
        client = _client(_json({"status": "success", "data": {}}))

        with pytest.raises(RemoteError):
            await client.create_lead({"company": "Acme"}, [{"key_person": "Jane"}])

    @pytest.mark.asyncio
    async def test_log_follow_up_with_proof(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "success", "data": {**LOG_ROW, "Proof URL": "https://drive.example.com/proof"}})

        stored = await _client(handler).log_follow_up(
            {"lead_no": "L-100", "action": "Payment Received"},
            next_follow_up_date="2024-05-12",
            proof_file={"mime_type": "image/png", "file_name": "receipt.png", "base64_data": "aGk="},
        )

        log_data = seen["body"]["logData"]
        assert seen["body"]["action"] == "logFollowUp"
        assert log_data["leadNo"] == "L-100"
        assert log_data["nextFollowUpDate"] == "2024-05-12T00:00:00.000Z"
        assert log_data["proofFile"] == {"mimeType": "image/png", "fileName": "receipt.png", "base64Data": "aGk="}
        assert stored["proof_url"] == "https://drive.example.com/proof"

    @pytest.mark.asyncio
    async def test_login_options_split_and_sorted(self):
        users = [
            {"userRow": 2, "name": "Zed", "role": "Sales Person"},
            {"userRow": 3, "name": "Ivy", "role": "Intern"},
            {"userRow": 4, "name": "Bob", "role": "Sales Person"},
            {"userRow": 5, "name": "Admin", "role": "Admin"},
        ]
        client = _client(_json({"status": "success", "data": users}))

        options = await client.login_options()

        assert options == {"sales_persons": ["Bob", "Zed"], "interns": ["Ivy"]}

    @pytest.mark.asyncio
    async def test_authenticate_rejected(self):
        client = _client(_json({"status": "error", "message": "Invalid password"}))

        with pytest.raises(RemoteError, match="Invalid password"):
            await client.authenticate("Bob", "wrong", "Sales Person")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("data", [
        {"contacts": [None], "followUps": []},
        {"contacts": [CONTACT_ROW], "followUps": ["Call"]},
    ])
    async def test_non_object_rows_are_parse_error(self, data):
        client = _client(_json({"status": "success", "data": data}))

        with pytest.raises(ParseError):
            await client.fetch_all()
