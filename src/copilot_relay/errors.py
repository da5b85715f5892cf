"""
Relay error types — one code per failure class surfaced by the core.
"""

import re
from typing import Any, Optional

# JSON-RPC code raised when a pending request is rejected because the
# assistant transport has already been torn down.
DISPOSED_CONNECTION_CODE = -32097
_DISPOSED_MESSAGE = re.compile(
    r"pending response rejected since connection got disposed|connection got disposed",
    re.IGNORECASE,
)


class RelayError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class UserFacingRejection(RelayError):
    """Rejected request that is reported straight back to the chat."""


class NoActiveSessionError(UserFacingRejection):
    def __init__(self, message: str = "No active session. Use /dirs to pick a working directory first."):
        super().__init__("no_active_session", message)


class ResetInProgressError(UserFacingRejection):
    def __init__(self, message: str = "The session is restarting, please try again in a moment."):
        super().__init__("resetting", message)


class InvalidSelectionError(UserFacingRejection):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("invalid_selection", message, details)


class SessionCreationError(RelayError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("session_creation_failed", message, details)


class DirectorySwitchError(RelayError):
    def __init__(self, directory: str, reason: str):
        super().__init__(
            "directory_switch_failed",
            f"Cannot switch to working directory {directory}: {reason}",
            {"directory": directory},
        )
        self.directory = directory


class SendError(RelayError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("send_failed", message, details)


class EventParseError(RelayError):
    def __init__(self, event_type: str, message: str):
        super().__init__("event_parse_error", f"Malformed {event_type} event: {message}", {"type": event_type})


class InvalidTransitionError(RelayError):
    def __init__(self, action: str, state: str):
        super().__init__("invalid_transition", f"Cannot {action} while {state}", {"state": state})


class TransportError(RelayError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("transport_error", message, details)


class ConfigError(RelayError):
    def __init__(self, message: str):
        super().__init__("config_error", message)


def is_disposed_connection_error(err: Optional[BaseException]) -> bool:
    """True for the known race where the assistant transport is already gone.

    Matches on the JSON-RPC error code first and falls back to the message
    text, since some wrappers drop the code.
    """
    if err is None:
        return False
    code = getattr(err, "code", None)
    if isinstance(code, int) and not isinstance(code, bool) and code == DISPOSED_CONNECTION_CODE:
        return True
    message = getattr(err, "message", None) or str(err)
    return bool(_DISPOSED_MESSAGE.search(str(message)))
