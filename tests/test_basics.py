"""Basic unit tests for the copilot-relay package."""

from copilot_relay import (
    ChatRegistry,
    EventSequencer,
    PromptDispatcher,
    SessionLifecycleManager,
    RelayError,
    UserFacingRejection,
    NoActiveSessionError,
    ResetInProgressError,
    InvalidSelectionError,
    SessionCreationError,
    DirectorySwitchError,
    SendError,
    is_disposed_connection_error,
    __version__,
)
from copilot_relay.models.events import EventType

from fakes import DisposedError


def test_version():
    assert __version__ == "0.1.0"


def test_public_exports():
    assert ChatRegistry is not None
    assert EventSequencer is not None
    assert PromptDispatcher is not None
    assert SessionLifecycleManager is not None


def test_error_hierarchy():
    assert issubclass(UserFacingRejection, RelayError)
    assert issubclass(NoActiveSessionError, UserFacingRejection)
    assert issubclass(ResetInProgressError, UserFacingRejection)
    assert issubclass(InvalidSelectionError, UserFacingRejection)
    assert issubclass(SessionCreationError, RelayError)
    assert not issubclass(SessionCreationError, UserFacingRejection)
    assert issubclass(SendError, RelayError)


def test_error_attributes():
    err = RelayError(code="test_code", message="something broke")
    assert err.code == "test_code"
    assert str(err) == "something broke"
    assert err.details is None

    assert NoActiveSessionError().code == "no_active_session"
    assert ResetInProgressError().code == "resetting"

    switch = DirectorySwitchError("/nope", "No such file or directory")
    assert switch.code == "directory_switch_failed"
    assert switch.details == {"directory": "/nope"}
    assert "/nope" in str(switch)


def test_disposed_connection_predicate():
    assert is_disposed_connection_error(DisposedError())
    assert is_disposed_connection_error(RuntimeError("Connection got disposed."))
    assert is_disposed_connection_error(
        RuntimeError("pending response rejected since connection got disposed")
    )

    coded = RuntimeError("boom")
    coded.code = -32097  # type: ignore[attr-defined]
    assert is_disposed_connection_error(coded)

    assert not is_disposed_connection_error(None)
    assert not is_disposed_connection_error(RuntimeError("connection refused"))
    other = RuntimeError("boom")
    other.code = -32000  # type: ignore[attr-defined]
    assert not is_disposed_connection_error(other)


def test_event_constants():
    assert EventType.ASSISTANT_MESSAGE == "assistant.message"
    assert EventType.SESSION_IDLE == "session.idle"
    assert EventType.TOOL_EXECUTION_COMPLETE == "tool.execution_complete"
