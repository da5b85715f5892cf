"""
Provider summary: assistant CLI version, authentication and model
catalogue, queried once at startup.

Every query is optional: clients that lack `get_status`,
`get_auth_status` or `list_models`, or whose query fails, simply leave
that part of the summary out.
"""

import asyncio
import logging
import os
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from copilot_relay.assistant import ClientFactory
from copilot_relay.errors import SessionCreationError, is_disposed_connection_error

logger = logging.getLogger(__name__)

VENDOR_PREFIXES = [
    ("gpt-", "OpenAI"),
    ("o1-", "OpenAI"),
    ("claude-", "Anthropic"),
    ("gemini-", "Google"),
]


class _AnswerModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True, extra="ignore")


class ProviderStatus(_AnswerModel):
    version: Optional[str] = None
    protocol_version: Optional[Any] = Field(None, validation_alias=AliasChoices("protocol_version", "protocolVersion"))


class AuthStatus(_AnswerModel):
    is_authenticated: bool = Field(False, validation_alias=AliasChoices("is_authenticated", "isAuthenticated"))
    auth_type: Optional[str] = Field(None, validation_alias=AliasChoices("auth_type", "authType"))
    host: Optional[str] = None
    login: Optional[str] = None
    status_message: Optional[str] = Field(None, validation_alias=AliasChoices("status_message", "statusMessage"))


class ModelSupports(_AnswerModel):
    vision: bool = False


class ModelCapabilities(_AnswerModel):
    supports: ModelSupports = Field(default_factory=ModelSupports)


class ModelEntry(_AnswerModel):
    id: str
    capabilities: ModelCapabilities = Field(default_factory=ModelCapabilities)

    @property
    def vision(self) -> bool:
        return self.capabilities.supports.vision


class ProviderInfo(BaseModel):
    status: Optional[ProviderStatus] = None
    auth: Optional[AuthStatus] = None
    models: list[ModelEntry] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.status is None and self.auth is None and not self.models

    @property
    def model_ids(self) -> list[str]:
        return [m.id for m in self.models]


def model_vendor(model_id: str) -> str:
    for prefix, vendor in VENDOR_PREFIXES:
        if model_id.startswith(prefix):
            return vendor
    return "Other"


async def _query(client: Any, name: str) -> Any:
    method = getattr(client, name, None)
    if method is None:
        return None
    try:
        return await method()
    except Exception as e:
        logger.warning("Provider query %s failed: %s", name, e)
        return None


async def fetch_provider_info(client_factory: ClientFactory, cwd: Optional[str] = None) -> ProviderInfo:
    """Start a throwaway client, run the available queries and stop it again.

    Raises SessionCreationError if the client cannot be started.
    """
    client: Any = None
    try:
        client = client_factory(cwd=cwd or os.getcwd())
        await client.start()
    except Exception as e:
        if client is not None:
            await _stop(client)
        raise SessionCreationError(f"Failed to start assistant client: {e}") from e

    try:
        status, auth, models = await asyncio.gather(
            _query(client, "get_status"),
            _query(client, "get_auth_status"),
            _query(client, "list_models"),
        )
    finally:
        await _stop(client)

    info = ProviderInfo(status=_parse(ProviderStatus, status), auth=_parse(AuthStatus, auth))
    for raw in models or []:
        entry = _parse(ModelEntry, raw)
        if entry is not None:
            info.models.append(entry)
    return info


def _parse(model: type[_AnswerModel], raw: Any) -> Any:
    if raw is None:
        return None
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        logger.warning("Ignoring malformed %s from provider: %s", model.__name__, e)
        return None


async def _stop(client: Any) -> None:
    try:
        await client.stop()
    except Exception as e:
        if is_disposed_connection_error(e):
            logger.debug("Ignored disposed connection error while stopping provider client: %s", e)
        else:
            logger.warning("Error while stopping provider client: %s", e)


def render_provider_info(info: ProviderInfo) -> str:
    lines = ["📊 Copilot provider info"]
    if info.status is not None:
        lines += [
            "",
            f"Version: {info.status.version or 'unknown'}",
            f"Protocol version: {info.status.protocol_version if info.status.protocol_version is not None else 'unknown'}",
        ]
    if info.auth is not None:
        auth = info.auth
        lines += ["", "🔐 Authentication", f"Authenticated: {'✅ yes' if auth.is_authenticated else '❌ no'}"]
        for label, value in (
            ("Auth type", auth.auth_type),
            ("Host", auth.host),
            ("User", auth.login),
            ("Status", auth.status_message),
        ):
            if value:
                lines.append(f"{label}: {value}")
    if info.models:
        lines += ["", f"🤖 Available models ({len(info.models)})"]
        vendors: dict[str, list[ModelEntry]] = {}
        for model in info.models:
            vendors.setdefault(model_vendor(model.id), []).append(model)
        for vendor, models in vendors.items():
            lines += ["", f"{vendor}:"]
            lines += [f"  • {m.id}{' 👁️' if m.vision else ''}" for m in models]
    return "\n".join(lines)
