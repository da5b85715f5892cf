"""
Assistant client contract.

The relay never talks to the assistant process directly; it is handed a
factory that builds a client bound to one working directory.
"""

import importlib
from typing import Any, Awaitable, Callable, Optional, Protocol

from copilot_relay.errors import ConfigError

EventCallback = Callable[[Any], None]


class AssistantSession(Protocol):
    def on(self, handler: EventCallback) -> Optional[Callable[[], None]]:
        """Register an event callback. May return an unsubscribe function."""

    async def send(self, prompt: str) -> Any: ...

    async def destroy(self) -> None: ...


class AssistantClient(Protocol):
    async def start(self) -> None: ...

    async def create_session(self, model: str) -> AssistantSession: ...

    async def stop(self) -> Any: ...


ClientFactory = Callable[..., AssistantClient]


async def abort_session(session: Any) -> None:
    """Ask the session to abandon its in-flight turn, when it supports it."""
    abort: Optional[Callable[[], Awaitable[Any]]] = getattr(session, "abort", None)
    if abort is not None:
        await abort()


def load_client_factory(path: str) -> ClientFactory:
    """Resolve a 'module:attribute' path to a client factory.

    The factory is called as ``factory(cwd=<directory>)``.
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigError(f"Client factory must look like 'module:attribute', got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import assistant client module {module_name!r}: {e}")
    factory = module
    for part in attr.split("."):
        try:
            factory = getattr(factory, part)
        except AttributeError:
            raise ConfigError(f"{module_name!r} has no attribute {attr!r}")
    if not callable(factory):
        raise ConfigError(f"{path!r} is not callable")
    return factory  # type: ignore[return-value]
