"""Call event state machine.

Pure transition function for one call:

    transition(state, event, context) -> Transition(new_state, effects)

It performs no I/O. The executor applies the returned effects (provider
actions, database writes, conversation sessions) in order.

Flow of an announce-and-gather call:

    INITIATED --answered--> SPEAKING --speech ended--> GATHERING
        --digits--> CLOSING --hangup--> HANGUP

A conversational call goes INITIATED --answered--> CONVERSING and falls
back to SPEAKING if no session can be opened. Answering machines lead to
VOICEMAIL_LEFT. Once HANGUP is reached every further event is ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Union

from outreach_agent.calls.events import (
    CallAnswered,
    CallEvent,
    CallHangup,
    CallInitiated,
    ConversationUnavailable,
    DigitsGathered,
    MachineDetectionEnded,
    SpeechEnded,
    UnknownEvent,
)
from outreach_agent.db.models.core import AppointmentStatus, CallOutcome, CallType
from outreach_agent.telephony.base import CallContext
from outreach_agent.telephony.scripts import (
    CLOSING_SCRIPT,
    CONFIRMED_SCRIPT,
    RESCHEDULE_SCRIPT,
    reminder_script,
    voicemail_script,
)

CONFIRM_DIGIT = "1"
RESCHEDULE_DIGIT = "2"
GATHER_TIMEOUT_MS = 10000
HANGUP_DELAY_SECONDS = 5.0

# Outcomes a hangup must not overwrite with NO_ANSWER
CONCLUSIVE_OUTCOMES = frozenset(
    {CallOutcome.CONFIRMED.value, CallOutcome.RESCHEDULED.value, CallOutcome.VOICEMAIL.value}
)


class CallPhase(str, Enum):
    INITIATED = "INITIATED"
    ANSWERED = "ANSWERED"
    SPEAKING = "SPEAKING"
    GATHERING = "GATHERING"
    CLOSING = "CLOSING"
    CONVERSING = "CONVERSING"
    MACHINE_DETECTED = "MACHINE_DETECTED"
    VOICEMAIL_LEFT = "VOICEMAIL_LEFT"
    HANGUP = "HANGUP"


@dataclass(frozen=True)
class CallState:
    phase: CallPhase = CallPhase.INITIATED
    outcome: str | None = None


# ============================================================================
# Effects
# ============================================================================


@dataclass(frozen=True)
class RecordOutcome:
    outcome: str


@dataclass(frozen=True)
class UpdateAppointmentStatus:
    appointment_id: str
    status: str


@dataclass(frozen=True)
class Speak:
    text: str


@dataclass(frozen=True)
class GatherDigits:
    min_digits: int = 1
    max_digits: int = 1
    timeout_ms: int = GATHER_TIMEOUT_MS


@dataclass(frozen=True)
class ScheduleHangup:
    delay_seconds: float = HANGUP_DELAY_SECONDS


@dataclass(frozen=True)
class Hangup:
    pass


@dataclass(frozen=True)
class OpenConversation:
    prompt: str


@dataclass(frozen=True)
class CloseConversation:
    pass


@dataclass(frozen=True)
class RecordDuration:
    seconds: int


@dataclass(frozen=True)
class FinalizeTranscript:
    pass


Effect = Union[
    RecordOutcome,
    UpdateAppointmentStatus,
    Speak,
    GatherDigits,
    ScheduleHangup,
    Hangup,
    OpenConversation,
    CloseConversation,
    RecordDuration,
    FinalizeTranscript,
]


@dataclass(frozen=True)
class MachineContext:
    """Inputs the transitions read besides state and event.

    Attributes:
        call: Decoded call context (None when the provider sent none)
        conversational: Whether answered calls open a conversation session
        system_prompt: Instruction for the conversation session
    """

    call: CallContext | None = None
    conversational: bool = False
    system_prompt: str = ""

    @property
    def script_context(self) -> CallContext:
        return self.call or CallContext(call_type=CallType.REMINDER.value, business_id="")


@dataclass(frozen=True)
class Transition:
    state: CallState
    effects: tuple[Effect, ...] = field(default_factory=tuple)


def _stay(state: CallState) -> Transition:
    return Transition(state)


# ============================================================================
# Handlers
# ============================================================================


def _on_initiated(state: CallState, event: CallInitiated, ctx: MachineContext) -> Transition:
    return _stay(state)


def _on_answered(state: CallState, event: CallAnswered, ctx: MachineContext) -> Transition:
    if state.phase == CallPhase.MACHINE_DETECTED:
        return Transition(
            replace(state, phase=CallPhase.VOICEMAIL_LEFT),
            (Speak(voicemail_script(ctx.script_context)),),
        )
    if state.phase != CallPhase.INITIATED:
        return _stay(state)

    answered = CallState(CallPhase.ANSWERED, CallOutcome.ANSWERED.value)
    record = RecordOutcome(CallOutcome.ANSWERED.value)
    if ctx.conversational:
        return Transition(
            replace(answered, phase=CallPhase.CONVERSING),
            (record, OpenConversation(ctx.system_prompt)),
        )
    return Transition(
        replace(answered, phase=CallPhase.SPEAKING),
        (record, Speak(reminder_script(ctx.script_context))),
    )


def _on_conversation_unavailable(
    state: CallState, event: ConversationUnavailable, ctx: MachineContext
) -> Transition:
    if state.phase != CallPhase.CONVERSING:
        return _stay(state)
    return Transition(
        replace(state, phase=CallPhase.SPEAKING),
        (Speak(reminder_script(ctx.script_context)),),
    )


def _on_speech_ended(state: CallState, event: SpeechEnded, ctx: MachineContext) -> Transition:
    if state.phase == CallPhase.SPEAKING:
        return Transition(
            replace(state, phase=CallPhase.GATHERING),
            (GatherDigits(min_digits=1, max_digits=1, timeout_ms=GATHER_TIMEOUT_MS),),
        )
    if state.phase == CallPhase.VOICEMAIL_LEFT:
        return Transition(state, (Hangup(),))
    return _stay(state)


def _on_digits(state: CallState, event: DigitsGathered, ctx: MachineContext) -> Transition:
    if state.phase != CallPhase.GATHERING:
        return _stay(state)

    appointment_id = ctx.call.appointment_id if ctx.call else None
    closing = replace(state, phase=CallPhase.CLOSING)

    if event.digits in (CONFIRM_DIGIT, RESCHEDULE_DIGIT):
        if event.digits == CONFIRM_DIGIT:
            outcome, status, text = (
                CallOutcome.CONFIRMED,
                AppointmentStatus.CONFIRMED,
                CONFIRMED_SCRIPT,
            )
        else:
            outcome, status, text = (
                CallOutcome.RESCHEDULED,
                AppointmentStatus.RESCHEDULED,
                RESCHEDULE_SCRIPT,
            )
        effects: list[Effect] = [Speak(text), RecordOutcome(outcome.value)]
        if appointment_id:
            effects.append(UpdateAppointmentStatus(appointment_id, status.value))
        effects.append(ScheduleHangup(HANGUP_DELAY_SECONDS))
        return Transition(replace(closing, outcome=outcome.value), tuple(effects))

    return Transition(closing, (Speak(CLOSING_SCRIPT), ScheduleHangup(HANGUP_DELAY_SECONDS)))


def _on_machine_detection(
    state: CallState, event: MachineDetectionEnded, ctx: MachineContext
) -> Transition:
    if event.result != "machine":
        return _stay(state)
    if state.phase in (CallPhase.VOICEMAIL_LEFT, CallPhase.MACHINE_DETECTED):
        return _stay(state)

    voicemail = CallOutcome.VOICEMAIL.value
    if state.phase == CallPhase.INITIATED:
        # Not answered yet: the message is left once the answer arrives
        return Transition(
            CallState(CallPhase.MACHINE_DETECTED, voicemail),
            (RecordOutcome(voicemail),),
        )

    effects: list[Effect] = [RecordOutcome(voicemail)]
    if state.phase == CallPhase.CONVERSING:
        effects.append(CloseConversation())
    effects.append(Speak(voicemail_script(ctx.script_context)))
    return Transition(CallState(CallPhase.VOICEMAIL_LEFT, voicemail), tuple(effects))


def _on_hangup(state: CallState, event: CallHangup, ctx: MachineContext) -> Transition:
    effects: list[Effect] = []
    if event.duration_seconds is not None:
        effects.append(RecordDuration(event.duration_seconds))
    if ctx.conversational:
        effects.append(CloseConversation())

    outcome = state.outcome
    if outcome not in CONCLUSIVE_OUTCOMES:
        outcome = CallOutcome.NO_ANSWER.value
        effects.append(RecordOutcome(outcome))

    if ctx.conversational:
        effects.append(FinalizeTranscript())
    return Transition(CallState(CallPhase.HANGUP, outcome), tuple(effects))


def _on_unknown(state: CallState, event: UnknownEvent, ctx: MachineContext) -> Transition:
    return _stay(state)


_HANDLERS: dict[type, Callable[[CallState, CallEvent, MachineContext], Transition]] = {
    CallInitiated: _on_initiated,
    CallAnswered: _on_answered,
    ConversationUnavailable: _on_conversation_unavailable,
    SpeechEnded: _on_speech_ended,
    DigitsGathered: _on_digits,
    MachineDetectionEnded: _on_machine_detection,
    CallHangup: _on_hangup,
    UnknownEvent: _on_unknown,
}


def transition(state: CallState, event: CallEvent, ctx: MachineContext | None = None) -> Transition:
    """Next state and effects for ``event`` in ``state``.

    Args:
        state: Current call state
        event: Parsed call event
        ctx: Call context and conversation options

    Returns:
        The new state and the effects to apply, in order
    """
    ctx = ctx or MachineContext()
    if state.phase == CallPhase.HANGUP:
        return _stay(state)

    handler = _HANDLERS.get(type(event), _on_unknown)
    return handler(state, event, ctx)
