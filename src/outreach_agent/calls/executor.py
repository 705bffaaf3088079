"""Call event executor.

Loads a call's persisted state, runs the state machine for an incoming
event and applies the resulting effects:

- Provider actions (speak, gather, hangup, delayed hangup, media stream)
- Call log and appointment updates
- Conversation sessions (open, close, transcript classification)

Events for the same call are processed one at a time.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from outreach_agent.calls.events import ConversationUnavailable, ParsedEvent
from outreach_agent.calls.state_machine import (
    CallPhase,
    CallState,
    CloseConversation,
    Effect,
    FinalizeTranscript,
    GatherDigits,
    Hangup,
    MachineContext,
    OpenConversation,
    RecordDuration,
    RecordOutcome,
    ScheduleHangup,
    Speak,
    Transition,
    UpdateAppointmentStatus,
    transition,
)
from outreach_agent.conversation.base import ConversationService, ConversationSession
from outreach_agent.conversation.sessions import SessionArena
from outreach_agent.core.exceptions import ConversationError, TelephonyError
from outreach_agent.core.logging import get_logger
from outreach_agent.db.models.core import AppointmentStatus, CallLogModel
from outreach_agent.db.repositories import AppointmentRepository, CallLogRepository, TemplateRepository
from outreach_agent.telephony.base import CallContext, VoiceProvider
from outreach_agent.telephony.scripts import render_system_prompt

log = get_logger(__name__)


@dataclass
class _Pending:
    """Call log changes collected while applying effects."""

    values: dict[str, Any] = field(default_factory=dict)
    closed_session: ConversationSession | None = None


def load_state(call_log: CallLogModel | None) -> CallState:
    if call_log is None or not call_log.call_state:
        return CallState(CallPhase.INITIATED, call_log.call_outcome if call_log else None)
    return CallState(CallPhase(call_log.call_state), call_log.call_outcome)


class CallEventExecutor:
    """Applies state machine effects for call-control webhook events."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        provider: VoiceProvider,
        arena: SessionArena,
        conversation: ConversationService | None = None,
    ):
        """Initialize the executor.

        Args:
            session_factory: Async session factory
            provider: Provider that placed the calls
            arena: Registry of live conversation sessions
            conversation: Conversation service; None keeps every call on
                the announce-and-gather path
        """
        self.session_factory = session_factory
        self.provider = provider
        self.arena = arena
        self.conversation = conversation

        self._locks: dict[str, asyncio.Lock] = {}
        self._in_flight: defaultdict[str, int] = defaultdict(int)
        self._hangup_tasks: set[asyncio.Task] = set()

    @property
    def conversational(self) -> bool:
        return self.conversation is not None

    async def handle(self, parsed: ParsedEvent) -> Transition | None:
        """Process one parsed webhook event.

        Returns:
            The applied transition, or None if the event had no call handle
        """
        handle = parsed.handle
        if not handle:
            log.warning("Call event without call control id", event_type=type(parsed.event).__name__)
            return None

        lock = self._locks.setdefault(handle, asyncio.Lock())
        self._in_flight[handle] += 1
        try:
            async with lock:
                return await self._handle_locked(handle, parsed)
        finally:
            # State lives in the call log, so the lock is only needed while events queue
            self._in_flight[handle] -= 1
            if not self._in_flight[handle]:
                del self._in_flight[handle]
                self._locks.pop(handle, None)

    async def _handle_locked(self, handle: str, parsed: ParsedEvent) -> Transition:
        async with self.session_factory() as session:
            calls = CallLogRepository(session)
            call_log = await calls.get_by_provider_call_id(handle)
            if call_log is None:
                log.warning("No call log for call event", call_control_id=handle)

            state = load_state(call_log)
            ctx = await self._machine_context(session, parsed.context, state)

            result = transition(state, parsed.event, ctx)
            log.info(
                "Call event",
                call_control_id=handle,
                event_type=type(parsed.event).__name__,
                from_state=state.phase.value,
                to_state=result.state.phase.value,
                effects=[type(effect).__name__ for effect in result.effects],
            )

            pending = _Pending()
            result = await self._apply_all(session, handle, ctx, result, pending)

            if call_log is not None:
                pending.values["call_state"] = result.state.phase.value
                await calls.update_fields(call_log.id, **pending.values)
            await session.commit()

        return result

    async def _machine_context(
        self,
        session: AsyncSession,
        call: CallContext | None,
        state: CallState,
    ) -> MachineContext:
        if not self.conversational:
            return MachineContext(call=call)

        prompt = ""
        if state.phase == CallPhase.INITIATED and call is not None:
            templates = TemplateRepository(session)
            if call.campaign_type:
                template = await templates.get_campaign_template(
                    call.campaign_type, call.business_category
                )
            else:
                template = await templates.get_reminder_template(call.business_category)
            prompt = render_system_prompt(template.to_dict() if template else None, call)
        return MachineContext(call=call, conversational=True, system_prompt=prompt)

    async def _apply_all(
        self,
        session: AsyncSession,
        handle: str,
        ctx: MachineContext,
        result: Transition,
        pending: _Pending,
    ) -> Transition:
        for effect in result.effects:
            if isinstance(effect, OpenConversation):
                if not await self._open_conversation(handle, ctx, effect):
                    fallback = transition(result.state, ConversationUnavailable(), ctx)
                    log.warning(
                        "Conversation unavailable, falling back to announce and gather",
                        call_control_id=handle,
                    )
                    return await self._apply_all(session, handle, ctx, fallback, pending)
                continue
            await self._apply(session, handle, effect, pending)
        return result

    async def _apply(
        self,
        session: AsyncSession,
        handle: str,
        effect: Effect,
        pending: _Pending,
    ) -> None:
        try:
            if isinstance(effect, RecordOutcome):
                pending.values["call_outcome"] = effect.outcome
            elif isinstance(effect, RecordDuration):
                pending.values["duration_sec"] = effect.seconds
            elif isinstance(effect, UpdateAppointmentStatus):
                await AppointmentRepository(session).set_status(
                    effect.appointment_id, AppointmentStatus(effect.status)
                )
            elif isinstance(effect, Speak):
                await self.provider.speak(handle, effect.text)
            elif isinstance(effect, GatherDigits):
                await self.provider.gather_digits(
                    handle, effect.min_digits, effect.max_digits, effect.timeout_ms
                )
            elif isinstance(effect, Hangup):
                await self.provider.hangup(handle)
            elif isinstance(effect, ScheduleHangup):
                self._schedule_hangup(handle, effect.delay_seconds)
            elif isinstance(effect, CloseConversation):
                closed = await self.arena.close(handle)
                if closed is not None:
                    pending.closed_session = closed
            elif isinstance(effect, FinalizeTranscript):
                await self._finalize_transcript(handle, pending)
        except TelephonyError as e:
            log.error(
                "Call action failed",
                call_control_id=handle,
                effect=type(effect).__name__,
                error=str(e),
            )

    async def _open_conversation(
        self,
        handle: str,
        ctx: MachineContext,
        effect: OpenConversation,
    ) -> bool:
        """Open a session and fork call audio to it; False on failure."""
        voice = ctx.call.voice if ctx.call else None

        async def opener() -> ConversationSession:
            return await self.conversation.open_session(handle, effect.prompt, voice)

        try:
            session = await self.arena.open(handle, opener)
            await self.provider.start_media_stream(handle)
            await session.greet()
        except (ConversationError, TelephonyError) as e:
            log.error("Could not start conversation", call_control_id=handle, error=str(e))
            await self.arena.close(handle)
            return False
        return True

    async def _finalize_transcript(self, handle: str, pending: _Pending) -> None:
        session = pending.closed_session or await self.arena.close(handle)
        if session is None:
            log.debug("No conversation to finalize", call_control_id=handle)
            return

        transcript = session.transcript
        if not transcript:
            return
        pending.values["transcript"] = transcript

        analysis = await self.conversation.classify(transcript)
        if analysis is not None:
            pending.values["summary"] = analysis.summary
            pending.values["call_outcome"] = analysis.outcome

    def _schedule_hangup(self, handle: str, delay_seconds: float) -> None:
        async def hangup_later() -> None:
            await asyncio.sleep(delay_seconds)
            try:
                await self.provider.hangup(handle)
            except TelephonyError:
                log.debug("Call may have already ended", call_control_id=handle)

        task = asyncio.create_task(hangup_later(), name=f"hangup-{handle}")
        self._hangup_tasks.add(task)
        task.add_done_callback(self._hangup_tasks.discard)

    @property
    def pending_hangups(self) -> int:
        return len(self._hangup_tasks)

    async def close(self) -> None:
        """Cancel delayed hangups that have not fired yet."""
        tasks = list(self._hangup_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._hangup_tasks.clear()
