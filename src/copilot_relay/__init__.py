"""
copilot-relay — drive a Copilot assistant session from a chat.

Per-chat session state, prompt queueing and in-order relay of the
assistant's event stream.
"""

__version__ = "0.1.0"

from copilot_relay.dispatcher import PromptDispatcher, SubmitOutcome, compose_prompt
from copilot_relay.errors import (
    RelayError,
    UserFacingRejection,
    NoActiveSessionError,
    ResetInProgressError,
    InvalidSelectionError,
    SessionCreationError,
    DirectorySwitchError,
    SendError,
    EventParseError,
    InvalidTransitionError,
    TransportError,
    ConfigError,
    is_disposed_connection_error,
)
from copilot_relay.handlers import SessionEventHandler, ToolResultStore
from copilot_relay.lifecycle import SessionLifecycleManager
from copilot_relay.sequencer import EventSequencer
from copilot_relay.state import ChatRegistry, ChatSession, ChatState

__all__ = [
    "ChatRegistry",
    "ChatSession",
    "ChatState",
    "EventSequencer",
    "PromptDispatcher",
    "SubmitOutcome",
    "compose_prompt",
    "SessionLifecycleManager",
    "SessionEventHandler",
    "ToolResultStore",
    "RelayError",
    "UserFacingRejection",
    "NoActiveSessionError",
    "ResetInProgressError",
    "InvalidSelectionError",
    "SessionCreationError",
    "DirectorySwitchError",
    "SendError",
    "EventParseError",
    "InvalidTransitionError",
    "TransportError",
    "ConfigError",
    "is_disposed_connection_error",
]
