"""
Tests for the unpaid-hold lifecycle: refresh, warning, release and the periodic sweep.
"""

import json
from datetime import UTC, datetime, timedelta

import pytest
from freezegun import freeze_time

from studio_assistant.jobs.sweep_holds import run_sweep
from studio_assistant.services.holds.hold_lifecycle import (
    NO_OP,
    HoldEvaluation,
    clear_hold_fields,
    evaluate_hold,
    record_inbound_activity,
    release_field_updates,
)
from studio_assistant.services.integrations import crm_client
from studio_assistant.services.messaging.message_composer import render_message
from studio_assistant.services.state.canonical_state import build_canonical_state

T0 = datetime(2026, 3, 2, 17, 0, tzinfo=UTC)
HOLD_SLOT = {
    "startTime": "2026-03-03T17:00:00-07:00",
    "endTime": "2026-03-03T17:30:00-07:00",
    "displayText": "Tuesday, Mar 3 at 5pm",
}


def _hold_fields(activity_at=T0, **extra):
    return {
        "hold_appointment_id": "hold_1",
        "hold_created_at": T0.isoformat(),
        "hold_last_activity_at": activity_at.isoformat() if activity_at else None,
        "hold_slot": json.dumps(HOLD_SLOT),
        "deposit_link_sent": True,
        "deposit_link_url": "https://pay.example/abc",
        "last_sent_slots": json.dumps([HOLD_SLOT]),
        "times_sent": True,
        **extra,
    }


def _seed(backend, fields):
    contact = backend.crm.seed_contact("c1", fields, phone="+16025550100")
    return contact, build_canonical_state(contact)


def test_clear_hold_fields():
    assert clear_hold_fields() == {
        "hold_appointment_id": None,
        "hold_created_at": None,
        "hold_last_activity_at": None,
        "hold_slot": None,
        "hold_warning_sent": False,
    }


def test_release_updates_drop_stale_offer_and_remember_slot():
    state = build_canonical_state({"customField": _hold_fields()})
    updates = release_field_updates(state)
    assert updates["last_sent_slots"] is None
    assert updates["times_sent"] is False
    assert updates["deposit_link_sent"] is False
    assert updates["deposit_link_url"] is None
    assert json.loads(updates["last_released_slot"]) == HOLD_SLOT


@pytest.mark.asyncio
async def test_paid_deposit_is_a_no_op(backend):
    contact, state = _seed(backend, _hold_fields(deposit_paid=True))
    assert await evaluate_hold(contact, state, T0 + timedelta(minutes=30)) == NO_OP
    assert backend.crm.writes == []


@pytest.mark.asyncio
async def test_no_hold_is_a_no_op(backend):
    contact, state = _seed(backend, {"tattoo_summary": "rose"})
    assert await evaluate_hold(contact, state, T0) == NO_OP


@pytest.mark.asyncio
async def test_missing_activity_timestamp_is_a_no_op(backend):
    contact, state = _seed(backend, _hold_fields(activity_at=None))
    assert await evaluate_hold(contact, state, T0 + timedelta(minutes=30)) == NO_OP
    assert backend.calendar.status_updates == []


@pytest.mark.asyncio
async def test_below_warning_refreshes_on_inbound_evaluation(backend):
    contact, state = _seed(backend, _hold_fields())
    now = T0 + timedelta(minutes=5)

    assert await evaluate_hold(contact, state, now) == HoldEvaluation(refreshed=True)
    assert backend.crm.fields("c1")["hold_last_activity_at"] == now.isoformat()


@pytest.mark.asyncio
async def test_below_warning_sweep_does_not_refresh(backend):
    contact, state = _seed(backend, _hold_fields())
    result = await evaluate_hold(contact, state, T0 + timedelta(minutes=5), refresh_activity=False)
    assert result == NO_OP
    assert backend.crm.writes == []


@pytest.mark.asyncio
async def test_warning_sent_once(backend):
    contact, state = _seed(backend, _hold_fields())
    now = T0 + timedelta(minutes=12)

    assert await evaluate_hold(contact, state, now) == HoldEvaluation(warned=True)
    assert backend.crm.messages_for("c1") == [render_message("hold_warning")]
    assert backend.crm.fields("c1")["hold_warning_sent"] == "Yes"
    # A warning never moves the clock
    assert backend.crm.fields("c1")["hold_last_activity_at"] == T0.isoformat()

    contact = await backend.crm.get_contact("c1")
    state = build_canonical_state(contact)
    assert await evaluate_hold(contact, state, now + timedelta(minutes=3)) == NO_OP
    assert len(backend.crm.messages_for("c1")) == 1


@pytest.mark.asyncio
async def test_release_wins_over_warning(backend):
    contact, state = _seed(backend, _hold_fields())
    result = await evaluate_hold(contact, state, T0 + timedelta(minutes=25), refresh_activity=False)

    assert result == HoldEvaluation(released=True)
    assert ("hold_1", "cancelled", None) in backend.calendar.status_updates
    assert backend.crm.messages_for("c1") == [render_message("hold_release")]
    fields = backend.crm.fields("c1")
    assert "hold_appointment_id" not in fields
    assert "last_sent_slots" not in fields
    assert fields["deposit_link_sent"] == "No"
    assert json.loads(fields["last_released_slot"])["displayText"] == "Tuesday, Mar 3 at 5pm"


@pytest.mark.asyncio
async def test_release_continues_when_calendar_cancel_fails(backend):
    backend.calendar.fail_status_updates = True
    contact, state = _seed(backend, _hold_fields())
    result = await evaluate_hold(contact, state, T0 + timedelta(minutes=20))

    assert result.released is True
    assert "hold_appointment_id" not in backend.crm.fields("c1")


@pytest.mark.asyncio
async def test_release_notice_waits_for_the_fields_to_clear(backend):
    contact, state = _seed(backend, _hold_fields())
    backend.crm.fail_writes = True

    result = await evaluate_hold(contact, state, T0 + timedelta(minutes=20))

    assert result == NO_OP
    assert backend.crm.messages_for("c1") == []
    assert backend.crm.fields("c1")["hold_appointment_id"] == "hold_1"

    backend.crm.fail_writes = False
    state = build_canonical_state(backend.crm.contacts["c1"])
    assert (await evaluate_hold(contact, state, T0 + timedelta(minutes=25))).released is True
    assert backend.crm.messages_for("c1") == [render_message("hold_release")]


@pytest.mark.asyncio
async def test_inbound_activity_restarts_clock_and_rearms_warning(backend):
    contact, state = _seed(backend, _hold_fields(hold_warning_sent=True))
    now = T0 + timedelta(minutes=15)

    evaluation, updates = await record_inbound_activity(contact, state, now)

    assert evaluation == HoldEvaluation(refreshed=True)
    assert updates == {"hold_last_activity_at": now.isoformat(), "hold_warning_sent": False}
    assert backend.crm.fields("c1")["hold_warning_sent"] == "No"
    assert backend.crm.messages_for("c1") == []


@pytest.mark.asyncio
async def test_inbound_activity_past_release_releases(backend):
    contact, state = _seed(backend, _hold_fields())
    evaluation, updates = await record_inbound_activity(contact, state, T0 + timedelta(minutes=21))

    assert evaluation.released is True
    assert updates["hold_appointment_id"] is None
    assert backend.crm.messages_for("c1") == [render_message("hold_release")]


@pytest.mark.asyncio
async def test_inbound_activity_without_hold(backend):
    contact, state = _seed(backend, {"tattoo_summary": "rose"})
    assert await record_inbound_activity(contact, state, T0) == (NO_OP, {})


# ---- Sweep ----


@pytest.mark.asyncio
async def test_sweep_timeline_warns_once_then_releases(backend):
    """Untouched hold: nothing at +5, warning at +10, nothing at +15, release at +20."""
    with freeze_time("2026-03-02 17:00:00") as frozen:
        _seed(backend, _hold_fields(activity_at=datetime.now(UTC)))

        frozen.tick(timedelta(minutes=5))
        assert await run_sweep() == {"checked": 1, "warned": 0, "released": 0, "skipped": 1, "errors": 0}
        assert backend.crm.messages_for("c1") == []

        frozen.tick(timedelta(minutes=5))
        summary = await run_sweep()
        assert summary["warned"] == 1
        assert backend.crm.messages_for("c1") == [render_message("hold_warning")]

        frozen.tick(timedelta(minutes=5))
        summary = await run_sweep()
        assert summary["warned"] == 0
        assert summary["skipped"] == 1
        assert len(backend.crm.messages_for("c1")) == 1

        frozen.tick(timedelta(minutes=5))
        summary = await run_sweep()
        assert summary["released"] == 1
        assert backend.crm.messages_for("c1")[-1] == render_message("hold_release")
        assert ("hold_1", "cancelled", None) in backend.calendar.status_updates

        frozen.tick(timedelta(minutes=5))
        assert (await run_sweep())["checked"] == 0


@pytest.mark.asyncio
async def test_sweep_skips_paid_and_missing_contacts(backend, monkeypatch):
    backend.crm.seed_contact("paid", _hold_fields(deposit_paid=True))

    async def with_ghost():
        return ["paid", "ghost"]

    monkeypatch.setattr(crm_client, "list_active_holds", with_ghost)

    summary = await run_sweep(now=T0 + timedelta(minutes=30))
    assert summary == {"checked": 2, "warned": 0, "released": 0, "skipped": 2, "errors": 0}


@pytest.mark.asyncio
async def test_sweep_listing_failure_is_reported(backend):
    backend.crm.fail_list_holds = True
    summary = await run_sweep(now=T0)
    assert summary["errors"] == 1
    assert summary["checked"] == 0
