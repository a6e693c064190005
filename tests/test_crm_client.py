"""
Tests for the CRM and calendar HTTP clients (request shapes and error mapping).
"""

import json

import httpx
import pytest

from studio_assistant.services.integrations import calendar_client, crm_client
from studio_assistant.services.integrations.crm_client import CrmError


@pytest.fixture
def crm_transport(monkeypatch):
    """Route CRM requests to a handler; returns the list of captured requests."""
    captured = []
    responses = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        status, body = responses.get((request.method, request.url.path), (200, {}))
        return httpx.Response(status, json=body)

    def client_factory(api_version=None):
        headers = {"Version": api_version or "2021-07-28"}
        return httpx.AsyncClient(
            base_url="https://crm.test", headers=headers, transport=httpx.MockTransport(handler)
        )

    monkeypatch.setattr(crm_client, "create_httpx_client", client_factory)
    return captured, responses


@pytest.mark.asyncio
async def test_get_contact(crm_transport):
    captured, responses = crm_transport
    responses[("GET", "/contacts/c1")] = (200, {"contact": {"id": "c1", "firstName": "Ana"}})

    assert await crm_client.get_contact("c1") == {"id": "c1", "firstName": "Ana"}
    assert await crm_client.get_contact(None) is None
    assert len(captured) == 1


@pytest.mark.asyncio
async def test_get_contact_failure_returns_none(crm_transport):
    _, responses = crm_transport
    responses[("GET", "/contacts/c1")] = (404, {"message": "not found"})
    assert await crm_client.get_contact("c1") is None


@pytest.mark.asyncio
async def test_update_system_fields_encodes_values(crm_transport):
    captured, _ = crm_transport

    await crm_client.update_system_fields("c1", {"deposit_paid": True, "hold_slot": None, "timeline": "soon"})

    body = json.loads(captured[0].content)
    assert captured[0].method == "PUT"
    assert body == {
        "customFields": [
            {"key": "deposit_paid", "field_value": "Yes"},
            {"key": "hold_slot", "field_value": ""},
            {"key": "timeline", "field_value": "soon"},
        ]
    }


@pytest.mark.asyncio
async def test_write_failure_raises_crm_error(crm_transport):
    _, responses = crm_transport
    responses[("PUT", "/contacts/c1")] = (422, {"message": "bad field"})

    with pytest.raises(CrmError) as exc_info:
        await crm_client.update_system_fields("c1", {"timeline": "soon"})
    assert exc_info.value.status_code == 422


@pytest.mark.asyncio
async def test_send_is_dry_run_under_tests(crm_transport):
    captured, _ = crm_transport

    result = await crm_client.send_conversation_message("c1", "hello", {"is_dm": True}, dry_run=False)

    assert result["status"] == "dry_run"
    assert captured == []
    assert await crm_client.send_conversation_message("c1", "   ") is None


@pytest.mark.asyncio
async def test_list_active_holds(crm_transport):
    captured, responses = crm_transport
    responses[("POST", "/contacts/search")] = (200, {"contacts": [{"id": "c1"}, {"id": "c2"}, {}]})

    assert await crm_client.list_active_holds() == ["c1", "c2"]
    assert json.loads(captured[0].content)["filters"][0]["field"] == "customFields.hold_appointment_id"


@pytest.mark.asyncio
async def test_list_active_holds_follows_the_search_cursor(monkeypatch):
    pages = {
        None: [{"id": "c1", "searchAfter": [1, "c1"]}, {"id": "c2", "searchAfter": [2, "c2"]}],
        "c2": [{"id": "c3", "searchAfter": [3, "c3"]}, {"id": "c4", "searchAfter": [4, "c4"]}],
        "c4": [{"id": "c5", "searchAfter": [5, "c5"]}],
    }
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        bodies.append(body)
        cursor = body.get("searchAfter")
        return httpx.Response(200, json={"contacts": pages[cursor[1] if cursor else None]})

    monkeypatch.setattr(
        crm_client,
        "create_httpx_client",
        lambda api_version=None: httpx.AsyncClient(base_url="https://crm.test", transport=httpx.MockTransport(handler)),
    )

    assert await crm_client.list_active_holds(page_size=2) == ["c1", "c2", "c3", "c4", "c5"]
    assert [body.get("searchAfter") for body in bodies] == [None, [2, "c2"], [4, "c4"]]
    assert {body["pageLimit"] for body in bodies} == {2}


@pytest.mark.asyncio
async def test_calendar_requests_use_calendar_api_version(crm_transport):
    captured, responses = crm_transport
    responses[("POST", "/calendars/events/appointments")] = (200, {"id": "appt_1"})

    appointment = await calendar_client.create_appointment(
        calendar_id="cal_1",
        contact_id="c1",
        start_time="2026-03-02T17:00:00-07:00",
        end_time="2026-03-02T17:30:00-07:00",
        assigned_user_id="user_1",
    )

    assert appointment == {"id": "appt_1"}
    request = captured[0]
    assert request.headers["Version"] == calendar_client._calendar_version()
    body = json.loads(request.content)
    assert body["appointmentStatus"] == "new"
    assert body["assignedUserId"] == "user_1"


@pytest.mark.asyncio
async def test_calendar_argument_validation():
    with pytest.raises(ValueError):
        await calendar_client.create_appointment(calendar_id="", contact_id="c1", start_time="a", end_time="b")
    with pytest.raises(ValueError):
        await calendar_client.update_appointment_status("", "cancelled")
