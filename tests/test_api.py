"""Tests for the HTTP API: call event webhook, agent callbacks and health."""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from outreach_agent.api.webhook_security import GenericHMACValidator
from outreach_agent.conversation.base import TranscriptAnalysis
from outreach_agent.db.models import (
    AppointmentModel,
    CallLogModel,
    CallType,
    CampaignCallModel,
    CampaignCallStatus,
)
from outreach_agent.scheduling.base import LoopConfig, PeriodicLoop


def signed(body: dict, secret: str = "webhook-secret") -> tuple[bytes, dict[str, str]]:
    """Raw body plus HMAC headers for a call event."""
    raw = json.dumps(body).encode()
    timestamp = str(int(time.time()))
    signature = GenericHMACValidator(secret).sign(raw, timestamp)
    return raw, {
        "X-Signature": signature,
        "X-Timestamp": timestamp,
        "Content-Type": "application/json",
    }


ANSWERED = {"data": {"event_type": "call.answered", "payload": {"call_control_id": "cc-1"}}}


# ============================================================================
# Call Event Webhook
# ============================================================================


class TestCallEventWebhook:
    """Tests for POST /api/webhooks/call-events."""

    @pytest.mark.asyncio
    async def test_signed_event_drives_call(self, client, mock_provider):
        """Test a verified event runs the state machine."""
        raw, headers = signed(ANSWERED)

        response = await client.post("/api/webhooks/call-events", content=raw, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"received": True, "state": "speaking"}
        assert mock_provider.actions[0][:2] == ("speak", "cc-1")

    @pytest.mark.asyncio
    async def test_bad_signature_rejected(self, client, mock_provider):
        """Test a forged event is rejected before touching state."""
        raw, headers = signed(ANSWERED, secret="wrong-secret")

        response = await client.post("/api/webhooks/call-events", content=raw, headers=headers)

        assert response.status_code == 403
        assert response.json()["message"] == "Invalid signature"
        assert mock_provider.actions == []

    @pytest.mark.asyncio
    async def test_unsigned_event_rejected(self, client):
        """Test events without a signature are rejected."""
        response = await client.post("/api/webhooks/call-events", json=ANSWERED)

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_invalid_json(self, client):
        """Test a signed but unparsable body is a bad request."""
        raw = b"{not json"
        timestamp = str(int(time.time()))
        headers = {
            "X-Signature": GenericHMACValidator("webhook-secret").sign(raw, timestamp),
            "X-Timestamp": timestamp,
        }

        response = await client.post("/api/webhooks/call-events", content=raw, headers=headers)

        assert response.status_code == 400
        assert response.json() == {"error": "bad_request", "message": "Invalid JSON body"}

    @pytest.mark.asyncio
    async def test_unknown_route_not_found(self, client):
        """Test framework 404s go through the JSON error handler."""
        response = await client.get("/api/no-such-route")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_event_without_handle_acknowledged(self, client):
        """Test events the executor cannot route are still acknowledged."""
        raw, headers = signed({"data": {"event_type": "call.answered", "payload": {}}})

        response = await client.post("/api/webhooks/call-events", content=raw, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"received": True, "state": None}


# ============================================================================
# Authentication
# ============================================================================


class TestInternalAuth:
    """Tests for the internal API key on agent callbacks."""

    @pytest.mark.asyncio
    async def test_missing_header(self, client):
        """Test callbacks without credentials are unauthorized."""
        response = await client.get("/api/calls/by-room/room-1")

        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_wrong_key(self, client):
        """Test a wrong key is forbidden."""
        response = await client.get(
            "/api/calls/by-room/room-1",
            headers={"Authorization": "Bearer nope"},
        )

        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"


# ============================================================================
# Appointment Callbacks
# ============================================================================


class TestAppointmentCallbacks:
    """Tests for appointment status, reschedule and booking callbacks."""

    @pytest.mark.asyncio
    async def test_status_update(self, client, auth_headers, seed):
        """Test a status update also records the call outcome."""
        business = await seed.business()
        customer = await seed.customer(business)
        appointment = await seed.appointment(business, customer)
        call_log = await seed.call_log(business, appointment_id=appointment.id)

        response = await client.patch(
            f"/api/appointments/{appointment.id}/status",
            json={"status": "confirmed", "notes": "See you then", "call_log_id": str(call_log.id)},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["appointment"]["status"] == "CONFIRMED"
        log = await seed.get(CallLogModel, call_log.id)
        assert log.call_outcome == "CONFIRMED"
        assert log.summary == "See you then"

    @pytest.mark.asyncio
    async def test_status_without_mapped_outcome(self, client, auth_headers, seed):
        """Test statuses without a matching outcome record ANSWERED."""
        business = await seed.business()
        customer = await seed.customer(business)
        appointment = await seed.appointment(business, customer)
        call_log = await seed.call_log(business, appointment_id=appointment.id)

        await client.patch(
            f"/api/appointments/{appointment.id}/status",
            json={"status": "COMPLETED", "call_log_id": str(call_log.id)},
            headers=auth_headers,
        )

        log = await seed.get(CallLogModel, call_log.id)
        assert log.call_outcome == "ANSWERED"

    @pytest.mark.asyncio
    async def test_invalid_status(self, client, auth_headers, seed):
        """Test unknown statuses are rejected."""
        business = await seed.business()
        customer = await seed.customer(business)
        appointment = await seed.appointment(business, customer)

        response = await client.patch(
            f"/api/appointments/{appointment.id}/status",
            json={"status": "MAYBE"},
            headers=auth_headers,
        )

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_unknown_appointment(self, client, auth_headers):
        """Test updating a missing appointment is a 404."""
        response = await client.patch(
            f"/api/appointments/{uuid4()}/status",
            json={"status": "CONFIRMED"},
            headers=auth_headers,
        )

        assert response.status_code == 404
        assert response.json()["error"] == "RECORD_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_reschedule(self, client, auth_headers, seed):
        """Test a reschedule request is appended to the notes."""
        business = await seed.business()
        customer = await seed.customer(business)
        appointment = await seed.appointment(business, customer, description="Bring x-rays")
        call_log = await seed.call_log(business, appointment_id=appointment.id)

        response = await client.post(
            f"/api/appointments/{appointment.id}/reschedule",
            json={"preferred_time": "next Tuesday", "call_log_id": str(call_log.id)},
            headers=auth_headers,
        )

        assert response.status_code == 200
        stored = await seed.get(AppointmentModel, appointment.id)
        assert stored.status == "RESCHEDULED"
        assert stored.description == (
            "Bring x-rays\n\n"
            "[RESCHEDULE REQUESTED] Preferred time: next Tuesday. Reason: Not specified"
        )
        log = await seed.get(CallLogModel, call_log.id)
        assert log.call_outcome == "RESCHEDULED"
        assert "next Tuesday" in log.summary

    @pytest.mark.asyncio
    async def test_create_from_campaign(self, client, auth_headers, seed):
        """Test a booking creates the appointment and marks the campaign call."""
        business = await seed.business()
        customer = await seed.customer(business)
        campaign = await seed.campaign(business)
        campaign_call = await seed.campaign_call(
            campaign, customer, status=CampaignCallStatus.IN_PROGRESS.value
        )

        response = await client.post(
            "/api/appointments/create-from-campaign",
            json={
                "campaign_call_id": str(campaign_call.id),
                "customer_id": str(customer.id),
                "business_id": str(business.id),
                "title": "Checkup",
                "scheduled_at": "2025-01-20T17:00:00Z",
            },
            headers=auth_headers,
        )

        assert response.status_code == 201
        created = response.json()["appointment"]
        assert created["status"] == "SCHEDULED"
        assert created["duration_min"] == 30
        assert created["reminder_enabled"] is True
        stored = await seed.get(CampaignCallModel, campaign_call.id)
        assert stored.result_data == {
            "booked_appointment": True,
            "appointment_id": created["id"],
        }

    @pytest.mark.asyncio
    async def test_create_for_foreign_customer(self, client, auth_headers, seed):
        """Test booking a customer of another business is rejected."""
        business = await seed.business()
        other = await seed.business(name="Other Clinic")
        customer = await seed.customer(other)

        response = await client.post(
            "/api/appointments/create-from-campaign",
            json={
                "customer_id": str(customer.id),
                "business_id": str(business.id),
                "title": "Checkup",
                "scheduled_at": "2025-01-20T17:00:00Z",
            },
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_create_for_unknown_customer(self, client, auth_headers, seed):
        """Test booking a missing customer is a 404."""
        business = await seed.business()

        response = await client.post(
            "/api/appointments/create-from-campaign",
            json={
                "customer_id": str(uuid4()),
                "business_id": str(business.id),
                "title": "Checkup",
                "scheduled_at": "2025-01-20T17:00:00Z",
            },
            headers=auth_headers,
        )

        assert response.status_code == 404


# ============================================================================
# Call Callbacks
# ============================================================================


class TestCallCallbacks:
    """Tests for room lookups, agent errors and transcripts."""

    @pytest.mark.asyncio
    async def test_get_by_room(self, client, auth_headers, seed):
        """Test agents can look up their call by room."""
        business = await seed.business()
        call_log = await seed.call_log(business, room_name="reminder-abc-1")

        response = await client.get("/api/calls/by-room/reminder-abc-1", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["call"]["id"] == str(call_log.id)

    @pytest.mark.asyncio
    async def test_get_by_unknown_room(self, client, auth_headers):
        """Test unknown rooms are a 404."""
        response = await client.get("/api/calls/by-room/nowhere", headers=auth_headers)

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_agent_error(self, client, auth_headers, seed):
        """Test agent errors are recorded on the call log."""
        business = await seed.business()
        call_log = await seed.call_log(business, room_name="reminder-abc-1")

        response = await client.post(
            "/api/calls/by-room/reminder-abc-1/error",
            json={"error": "x" * 600, "timestamp": "2025-01-15T19:00:00Z"},
            headers=auth_headers,
        )

        assert response.json() == {"ok": True}
        log = await seed.get(CallLogModel, call_log.id)
        assert log.call_outcome == "ERROR"
        assert log.notes == "Agent error: " + "x" * 500

    @pytest.mark.asyncio
    async def test_agent_error_unknown_room(self, client, auth_headers):
        """Test errors for unknown rooms are acknowledged."""
        response = await client.post(
            "/api/calls/by-room/nowhere/error",
            json={"error": "boom"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json() == {"ok": True}

    @pytest.mark.asyncio
    async def test_transcript_uses_agent_summary(self, client, auth_headers, seed, fake_analyzer):
        """Test the agent's summary is kept when analysis is unavailable."""
        business = await seed.business()
        call_log = await seed.call_log(business)
        transcript = [{"role": "user", "content": "Yes, confirmed."}]

        response = await client.post(
            f"/api/calls/{call_log.id}/transcript",
            json={
                "transcript": transcript,
                "summary": "Confirmed by customer.",
                "duration_sec": 64,
                "call_outcome": "confirmed",
            },
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert fake_analyzer.calls == [transcript]
        log = await seed.get(CallLogModel, call_log.id)
        assert log.transcript == transcript
        assert log.summary == "Confirmed by customer."
        assert log.call_outcome == "CONFIRMED"
        assert log.duration_sec == 64

    @pytest.mark.asyncio
    async def test_transcript_analysis_wins(self, client, auth_headers, seed, fake_analyzer):
        """Test a successful analysis replaces summary and outcome."""
        fake_analyzer.analysis = TranscriptAnalysis(summary="Wants a new time.", outcome="RESCHEDULED")
        business = await seed.business()
        call_log = await seed.call_log(business)

        await client.post(
            f"/api/calls/{call_log.id}/transcript",
            json={"transcript": [], "summary": "Confirmed.", "call_outcome": "CONFIRMED"},
            headers=auth_headers,
        )

        log = await seed.get(CallLogModel, call_log.id)
        assert log.summary == "Wants a new time."
        assert log.call_outcome == "RESCHEDULED"

    @pytest.mark.asyncio
    async def test_transcript_unknown_outcome_ignored(self, client, auth_headers, seed):
        """Test unknown agent outcomes leave the outcome untouched."""
        business = await seed.business()
        call_log = await seed.call_log(business, call_outcome="ANSWERED")

        await client.post(
            f"/api/calls/{call_log.id}/transcript",
            json={"summary": "Chatted.", "call_outcome": "DELIGHTED"},
            headers=auth_headers,
        )

        log = await seed.get(CallLogModel, call_log.id)
        assert log.call_outcome == "ANSWERED"
        assert log.summary == "Chatted."

    @pytest.mark.asyncio
    async def test_transcript_unknown_call(self, client, auth_headers):
        """Test transcripts for missing calls are a 404."""
        response = await client.post(
            f"/api/calls/{uuid4()}/transcript",
            json={"summary": "?"},
            headers=auth_headers,
        )

        assert response.status_code == 404


# ============================================================================
# Campaign Callbacks
# ============================================================================


class TestCampaignResult:
    """Tests for POST /api/campaign-calls/{id}/result."""

    @pytest.mark.asyncio
    async def test_result_completes_call(self, client, auth_headers, seed):
        """Test the result completes the call and records the outcome."""
        business = await seed.business()
        customer = await seed.customer(business)
        campaign = await seed.campaign(business)
        campaign_call = await seed.campaign_call(
            campaign, customer, status=CampaignCallStatus.IN_PROGRESS.value
        )
        call_log = await seed.call_log(
            business,
            call_type=CallType.RE_ENGAGEMENT.value,
            campaign_call_id=campaign_call.id,
        )

        response = await client.post(
            f"/api/campaign-calls/{campaign_call.id}/result",
            json={"outcome": "booked", "result_data": {"slot": "Tue 9am"}, "summary": "Booked."},
            headers=auth_headers,
        )

        assert response.status_code == 200
        body = response.json()["campaign_call"]
        assert body["status"] == "COMPLETED"
        assert body["result_data"] == {"slot": "Tue 9am"}
        assert body["completed_at"] is not None
        log = await seed.get(CallLogModel, call_log.id)
        assert log.call_outcome == "BOOKED"
        assert log.summary == "Booked."

    @pytest.mark.asyncio
    async def test_unknown_outcome_recorded_as_answered(self, client, auth_headers, seed):
        """Test outcomes outside the campaign set become ANSWERED."""
        business = await seed.business()
        customer = await seed.customer(business)
        campaign = await seed.campaign(business)
        campaign_call = await seed.campaign_call(campaign, customer)
        call_log = await seed.call_log(business, campaign_call_id=campaign_call.id)

        await client.post(
            f"/api/campaign-calls/{campaign_call.id}/result",
            json={"outcome": "CONFIRMED"},
            headers=auth_headers,
        )

        log = await seed.get(CallLogModel, call_log.id)
        assert log.call_outcome == "ANSWERED"

    @pytest.mark.asyncio
    async def test_result_data_limit(self, client, auth_headers, seed):
        """Test oversized result data is rejected."""
        response = await client.post(
            f"/api/campaign-calls/{uuid4()}/result",
            json={"result_data": {f"k{i}": i for i in range(51)}},
            headers=auth_headers,
        )

        assert response.status_code == 422


# ============================================================================
# Health
# ============================================================================


class IdleLoop(PeriodicLoop):
    name = "idle"

    async def tick(self, now: datetime) -> None:
        return None


class TestHealth:
    """Tests for GET /health."""

    @pytest.mark.asyncio
    async def test_healthy(self, client):
        """Test a reachable database without loops reports healthy."""
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["instance_id"] == "test-instance"
        assert body["checks"]["database"] == "ok"
        assert body["checks"]["telephony"]["provider"] == "mock"
        datetime.fromisoformat(body["timestamp"]).astimezone(timezone.utc)

    @pytest.mark.asyncio
    async def test_stopped_loop_degrades(self, app, client):
        """Test a registered loop that is not running degrades health."""
        app.state.loops = {"reminders": IdleLoop(LoopConfig())}

        response = await client.get("/health")

        body = response.json()
        assert body["status"] == "degraded"
        assert body["checks"]["schedulers"]["reminders"]["state"] == "stopped"
