"""
Extraction session states, events and the transition function

A session moves IDLE -> LOADING -> EXTRACTING(0..N-1) and ends in exactly one
terminal state: SUCCEEDED, MANUAL_FALLBACK or ERROR. `transition` is pure;
the coordinator feeds it events and applies the result.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Optional, Union

from snapshot_engine.services.frame_decoder import DecodeError, DecodeErrorCause

EXHAUSTED_MESSAGE = "Could not automatically extract snapshot. Please capture manually."
SESSION_TIMEOUT_MESSAGE = "Automatic snapshot extraction timed out. Please capture manually."
FAULT_MESSAGE = "Automatic snapshot extraction failed unexpectedly. Please capture manually."


class ManualModeKind(str, Enum):
    """Why a session handed over to manual capture"""
    EXHAUSTED = "exhausted"
    DECODE_ERROR = "decode_error"
    TIMEOUT = "timeout"
    FAULT = "fault"


@dataclass(frozen=True)
class ManualModeReason:
    """
    Reason reported through on_manual_mode_required.

    Attributes:
        kind: Category of the failure
        message: User-facing explanation
        error: Underlying exception, when there is one
    """
    kind: ManualModeKind
    message: str
    error: Optional[BaseException] = field(default=None, compare=False)

    @property
    def cause(self) -> Optional[DecodeErrorCause]:
        if isinstance(self.error, DecodeError):
            return self.error.cause
        return None


# ============================================================================
# States
# ============================================================================

@dataclass(frozen=True)
class Idle:
    name: ClassVar[str] = "idle"
    terminal: ClassVar[bool] = False


@dataclass(frozen=True)
class Loading:
    name: ClassVar[str] = "loading"
    terminal: ClassVar[bool] = False


@dataclass(frozen=True)
class Extracting:
    index: int
    name: ClassVar[str] = "extracting"
    terminal: ClassVar[bool] = False


@dataclass(frozen=True)
class Succeeded:
    url: str
    name: ClassVar[str] = "succeeded"
    terminal: ClassVar[bool] = True


@dataclass(frozen=True)
class ManualFallback:
    reason: ManualModeReason
    name: ClassVar[str] = "manual_fallback"
    terminal: ClassVar[bool] = True


@dataclass(frozen=True)
class Error:
    message: str
    error: Optional[BaseException] = field(default=None, compare=False)
    name: ClassVar[str] = "error"
    terminal: ClassVar[bool] = True


ExtractionState = Union[Idle, Loading, Extracting, Succeeded, ManualFallback, Error]


# ============================================================================
# Events
# ============================================================================

@dataclass(frozen=True)
class SessionStarted:
    pass


@dataclass(frozen=True)
class DecoderReady:
    pass


@dataclass(frozen=True)
class DecodeFailed:
    error: DecodeError = field(compare=False)


@dataclass(frozen=True)
class FrameRejected:
    pass


@dataclass(frozen=True)
class UploadFailed:
    error: Optional[BaseException] = field(default=None, compare=False)


@dataclass(frozen=True)
class UploadSucceeded:
    url: str


@dataclass(frozen=True)
class DeadlineExpired:
    pass


@dataclass(frozen=True)
class SessionFaulted:
    error: BaseException = field(compare=False)


ExtractionEvent = Union[
    SessionStarted, DecoderReady, DecodeFailed, FrameRejected,
    UploadFailed, UploadSucceeded, DeadlineExpired, SessionFaulted,
]


def _advance(index: int, candidate_count: int) -> ExtractionState:
    next_index = index + 1
    if next_index < candidate_count:
        return Extracting(next_index)
    return ManualFallback(ManualModeReason(ManualModeKind.EXHAUSTED, EXHAUSTED_MESSAGE))


def transition(
    state: ExtractionState,
    event: ExtractionEvent,
    candidate_count: int,
) -> ExtractionState:
    """
    Compute the next session state.

    Terminal states absorb every event. Events that do not apply to the
    current state leave it unchanged.

    Args:
        state: Current state
        event: Event observed by the coordinator
        candidate_count: Number of candidate timestamps in the session

    Returns:
        The next state (possibly the same object)
    """
    if state.terminal:
        return state

    if isinstance(event, SessionFaulted):
        return Error(message=FAULT_MESSAGE, error=event.error)

    if isinstance(event, DeadlineExpired):
        return ManualFallback(ManualModeReason(ManualModeKind.TIMEOUT, SESSION_TIMEOUT_MESSAGE))

    if isinstance(state, Idle):
        if isinstance(event, SessionStarted):
            return Loading()
        return state

    if isinstance(event, DecodeFailed):
        return ManualFallback(
            ManualModeReason(ManualModeKind.DECODE_ERROR, event.error.user_message, event.error)
        )

    if isinstance(state, Loading):
        if isinstance(event, DecoderReady):
            if candidate_count > 0:
                return Extracting(0)
            return ManualFallback(ManualModeReason(ManualModeKind.EXHAUSTED, EXHAUSTED_MESSAGE))
        return state

    if isinstance(state, Extracting):
        if isinstance(event, (FrameRejected, UploadFailed)):
            return _advance(state.index, candidate_count)
        if isinstance(event, UploadSucceeded):
            return Succeeded(event.url)

    return state
