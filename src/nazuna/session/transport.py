"""
Boundary with the messaging protocol library.

Nazuna does not speak the wire protocol itself. A connector, selected by
dotted path in ``app_config.yml``, builds a :class:`ProtocolClient` from a
:class:`TransportConfig`; everything else in the package talks to that
client only through the methods declared here.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple

from nazuna.cache.retry_counter_cache import RetryCounterCache
from nazuna.datatypes.protocol_datatypes import ProtocolEvent
from nazuna.errors import ConnectorError
from nazuna.session.credential_store import AuthState

EventHandler = Callable[[Any], Any]


class ProtocolClient(Protocol):
    """A connected client instance as exposed by the protocol library."""

    @property
    def user_id(self) -> Optional[str]:
        """Own jid once the connection is open, ``None`` before."""

    @property
    def registered(self) -> bool:
        """Whether the stored credentials are already paired."""

    def on(self, event_type: ProtocolEvent, handler: EventHandler) -> None: ...

    async def send_message(self, chat_id: str, content: Dict[str, Any]) -> Any: ...

    async def remove_participant(self, group_id: str, participant_id: str) -> Any: ...

    async def fetch_group_metadata(self, group_id: str) -> Any: ...

    async def fetch_profile_picture(self, participant_id: str) -> Optional[str]: ...

    async def request_pairing_code(self, phone_number: str, custom_code: Optional[str] = None) -> str: ...

    async def close(self) -> None: ...


@dataclass
class TransportConfig:
    """Everything the protocol library needs to open one session."""

    auth_state: AuthState
    print_qr: bool
    connect_timeout: float
    qr_timeout: float
    keep_alive_interval: float
    browser: Tuple[str, str, str]
    retry_counter_cache: RetryCounterCache
    get_message: Callable[[str], Optional[Any]]
    emit_own_events: bool = True
    sync_full_history: bool = True
    mark_online_on_connect: bool = True


Connector = Callable[[TransportConfig], Awaitable[ProtocolClient]]


def resolve_dotted(path: str) -> Any:
    """Import ``module:attribute`` (or ``module.attribute``) and return the attribute."""
    if ":" in path:
        module_name, _, attribute = path.partition(":")
    else:
        module_name, _, attribute = path.rpartition(".")
    if not module_name or not attribute:
        raise ValueError(f"Invalid dotted path: {path!r}")
    module = importlib.import_module(module_name)
    target: Any = module
    for part in attribute.split("."):
        target = getattr(target, part)
    return target


def load_connector(path: Optional[str]) -> Connector:
    """Resolve the configured connector or raise :class:`ConnectorError`."""
    if not path:
        raise ConnectorError("No protocol connector configured (transport.connector in app_config.yml)")
    try:
        connector = resolve_dotted(path)
    except (ImportError, AttributeError, ValueError) as exc:
        raise ConnectorError(f"Cannot load protocol connector {path!r}: {exc}") from exc
    if not callable(connector):
        raise ConnectorError(f"Protocol connector {path!r} is not callable")
    return connector
