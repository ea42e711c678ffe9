"""
Session lifecycle manager.

Owns the primary session and, in dual mode, a secondary one. Each session
runs the state machine ``bootstrapping -> connecting -> open -> closed`` on
its own event bus; the two never share lifecycle state.

Every close is followed by a reconnect, forever. The first retry of the
primary is immediate (the secondary waits a few seconds), later retries back
off exponentially up to a cap, and the counter resets once the session is
open again. A logged-out or expired session has its credential directory
deleted before the next bootstrap so that pairing starts from scratch.
"""

from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from nazuna.cache.message_cache import MessageDedupCache
from nazuna.cache.retry_counter_cache import RetryCounterCache
from nazuna.configuration.app_configuration import AppConfig
from nazuna.datatypes.protocol_datatypes import ConnectionUpdate, ProtocolEvent
from nazuna.datatypes.session_datatypes import (
    DisconnectKind,
    SessionRole,
    SessionState,
    classify_disconnect,
)
from nazuna.errors import BootstrapInputError, StartupError
from nazuna.session.credential_store import CredentialStore
from nazuna.session.event_bus import SessionEventBus
from nazuna.session.transport import Connector, ProtocolClient, TransportConfig
from nazuna.ui import console
from nazuna.util.logger import get_logger

logger = get_logger("session_manager")

AUTH_DIRNAMES: Dict[SessionRole, str] = {
    SessionRole.PRIMARY: "qr-code",
    SessionRole.SECONDARY: "qr-code-secondary",
}

# Errors that end the process instead of being retried
FATAL_ERRORS = (BootstrapInputError, StartupError)


@dataclass
class Session:
    """One connected client instance and its lifecycle bookkeeping."""

    role: SessionRole
    credential_store: CredentialStore
    state: SessionState = SessionState.BOOTSTRAPPING
    client: Optional[ProtocolClient] = None
    bus: Optional[SessionEventBus] = None
    user_id: Optional[str] = None
    reconnect_attempts: int = 0
    reconnect_pending: bool = False
    last_disconnect: Optional[DisconnectKind] = None
    ready: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def auth_dir(self) -> Path:
        return self.credential_store.directory

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.OPEN and self.client is not None


class SessionManager:
    """Brings sessions up, keeps them connected and routes their events."""

    def __init__(
        self,
        app_config: AppConfig,
        connector: Connector,
        dedup_cache: MessageDedupCache,
        retry_counter_cache: RetryCounterCache,
        *,
        code_mode: bool = False,
        dual_mode: bool = False,
        phone_prompt: Callable[[], Awaitable[str]] = console.ask_phone_number,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.app_config = app_config
        self.connector = connector
        self.dedup_cache = dedup_cache
        self.retry_counter_cache = retry_counter_cache
        self.code_mode = code_mode
        self.dual_mode = dual_mode
        self.phone_prompt = phone_prompt
        self._sleep = sleep

        self.sessions: Dict[SessionRole, Session] = {}
        self.group_listener: Any = None
        self.message_intake: Any = None

        self._use_secondary = False
        self._stopping = False
        self._stopped = asyncio.Event()
        self._reconnect_tasks: Dict[SessionRole, asyncio.Task] = {}
        self.fatal_error: Optional[BaseException] = None

    def attach_listeners(self, group_listener: Any, message_intake: Any) -> None:
        """Register the primary session's group and message consumers."""
        self.group_listener = group_listener
        self.message_intake = message_intake

    # --------------------------
    # Bootstrap
    # --------------------------
    def _get_or_create_session(self, role: SessionRole) -> Session:
        session = self.sessions.get(role)
        if session is None:
            store = CredentialStore(self.app_config.auth_dir / AUTH_DIRNAMES[role])
            session = Session(role=role, credential_store=store)
            self.sessions[role] = session
        return session

    def _ensure_directories(self, session: Session) -> None:
        try:
            self.app_config.groups_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StartupError(f"Cannot create group config directory {self.app_config.groups_dir}: {exc}") from exc
        session.credential_store.ensure_directory()

    def _build_transport_config(self, session: Session, auth_state: Any) -> TransportConfig:
        return TransportConfig(
            auth_state=auth_state,
            print_qr=not self.code_mode,
            connect_timeout=self.app_config.connect_timeout,
            qr_timeout=self.app_config.qr_timeout,
            keep_alive_interval=self.app_config.keep_alive_interval,
            browser=self.app_config.browser,
            retry_counter_cache=self.retry_counter_cache,
            get_message=self.dedup_cache.get,
        )

    def _subscribe(self, session: Session, client: ProtocolClient, bus: SessionEventBus) -> None:
        store = session.credential_store
        bus.subscribe(ProtocolEvent.CREDENTIALS_UPDATED, lambda creds: asyncio.to_thread(store.save_creds, creds))
        bus.subscribe(
            ProtocolEvent.CONNECTION_STATE_CHANGED,
            functools.partial(self.handle_connection_update, session),
        )

        if session.role is SessionRole.PRIMARY:
            if self.group_listener is not None:
                bus.subscribe(
                    ProtocolEvent.GROUP_METADATA_CHANGED,
                    functools.partial(self.group_listener.handle_group_update, client),
                )
                bus.subscribe(
                    ProtocolEvent.MEMBERSHIP_CHANGED,
                    functools.partial(self.group_listener.handle_membership, client),
                )
            if self.message_intake is not None:
                bus.subscribe(ProtocolEvent.MESSAGES_RECEIVED, self.message_intake.handle_batch)

        for event_type in ProtocolEvent:
            client.on(event_type, functools.partial(bus.publish, event_type))

    async def _pair_with_code(self, client: ProtocolClient) -> None:
        phone_number = await self.phone_prompt()
        code = await asyncio.wait_for(
            client.request_pairing_code(phone_number, self.app_config.pairing_code),
            timeout=self.app_config.action_timeout,
        )
        console.show_pairing_code(code)

    async def start_session(self, role: SessionRole) -> Session:
        """
        Bootstrap one session: load credentials, connect and subscribe.

        Raises:
            StartupError: If the credential or group directories cannot be created.
            BootstrapInputError: If the operator enters an invalid phone number.
        """
        session = self._get_or_create_session(role)
        session.state = SessionState.BOOTSTRAPPING
        session.ready.clear()

        self._ensure_directories(session)
        auth_state = await asyncio.to_thread(session.credential_store.load)
        config = self._build_transport_config(session, auth_state)

        client = await asyncio.wait_for(self.connector(config), timeout=self.app_config.connect_timeout)
        session.client = client

        bus = SessionEventBus(role.value)
        session.bus = bus
        self._subscribe(session, client, bus)
        bus.start()
        session.state = SessionState.CONNECTING

        if self.code_mode and not client.registered:
            await self._pair_with_code(client)

        return session

    # --------------------------
    # Connection state machine
    # --------------------------
    async def handle_connection_update(self, session: Session, payload: Any) -> None:
        update = ConnectionUpdate.from_payload(payload)

        if update.qr and not self.code_mode:
            console.show_qr_token(session.role.value, update.qr)

        if update.connection == "connecting":
            session.state = SessionState.CONNECTING
            logger.info("[SESSION MANAGER] Connecting %s session...", session.role)
        elif update.connection == "open":
            self._on_open(session)
        elif update.connection == "close":
            await self._on_close(session, update)

    def _on_open(self, session: Session) -> None:
        session.state = SessionState.OPEN
        session.reconnect_attempts = 0
        session.user_id = getattr(session.client, "user_id", None)
        session.ready.set()

        if session.role is SessionRole.PRIMARY:
            logger.info(
                "[SESSION MANAGER] ✅ Bot %s started! Prefix: %s | Owner: %s | Dual mode: %s",
                self.app_config.bot_name,
                self.app_config.prefix,
                self.app_config.owner_name or self.app_config.owner_number,
                "enabled" if self.dual_mode else "disabled",
            )
        else:
            logger.info("[SESSION MANAGER] ✅ Secondary connection established")

    async def _on_close(self, session: Session, update: ConnectionUpdate) -> None:
        kind = classify_disconnect(update.status_code, update.error)
        session.state = SessionState.CLOSED
        session.last_disconnect = kind
        session.ready.clear()
        logger.warning(
            "[SESSION MANAGER] ❌ %s connection closed. Code: %s | Reason: %s",
            session.role,
            update.status_code,
            kind.label,
        )

        if kind.purges_credentials:
            # no credential write from this connection may land after the purge
            if session.bus is not None:
                await session.bus.shutdown()
            await asyncio.to_thread(session.credential_store.purge)

        if self._stopping:
            return
        self._schedule_reconnect(session)

    # --------------------------
    # Reconnection
    # --------------------------
    def reconnect_delay(self, role: SessionRole, attempt: int) -> float:
        """Delay before reconnect attempt number ``attempt`` (1-based)."""
        if attempt <= 1:
            return 0.0 if role is SessionRole.PRIMARY else self.app_config.secondary_first_delay
        delay = self.app_config.reconnect_base_delay * (2 ** (attempt - 2))
        return min(delay, self.app_config.reconnect_max_delay)

    def _schedule_reconnect(self, session: Session) -> None:
        session.reconnect_pending = True
        task = self._reconnect_tasks.get(session.role)
        if task is not None and not task.done():
            return
        self._reconnect_tasks[session.role] = asyncio.create_task(
            self._reconnect(session), name=f"nazuna-reconnect-{session.role.value}"
        )

    async def _teardown(self, session: Session) -> None:
        bus, client = session.bus, session.client
        session.bus = None
        session.client = None
        if bus is not None:
            await bus.shutdown()
        if client is not None:
            try:
                await client.close()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.debug("[SESSION MANAGER] Error closing %s client: %s", session.role, exc)

    async def _reconnect(self, session: Session) -> None:
        await self._teardown(session)
        while not self._stopping:
            session.reconnect_attempts += 1
            delay = self.reconnect_delay(session.role, session.reconnect_attempts)
            if delay > 0:
                logger.info("[SESSION MANAGER] Waiting %.1fs before reconnecting %s session", delay, session.role)
                await self._sleep(delay)
            if self._stopping:
                return

            logger.info(
                "[SESSION MANAGER] 🔄 Reconnecting %s session (attempt %d)...",
                session.role,
                session.reconnect_attempts,
            )
            session.reconnect_pending = False
            try:
                await self.start_session(session.role)
            except FATAL_ERRORS as exc:
                self._fail(exc)
                return
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                kind = classify_disconnect(None, exc)
                session.state = SessionState.CLOSED
                session.last_disconnect = kind
                logger.error(
                    "[SESSION MANAGER] Reconnect of %s session failed (%s): %s",
                    session.role,
                    kind.label,
                    str(exc) or type(exc).__name__,
                )
                await self._teardown(session)
                continue

            if not session.reconnect_pending:
                return
            # closed again while this attempt was still bootstrapping
            logger.info("[SESSION MANAGER] %s session closed during reconnect, retrying", session.role)
            await self._teardown(session)

    # --------------------------
    # Public lifecycle
    # --------------------------
    async def start(self) -> None:
        """
        Start the primary session and, in dual mode, the secondary.

        A secondary that fails to start is logged and the bot keeps running on
        the primary alone; a primary failure propagates.
        """
        logger.info(
            "[SESSION MANAGER] 🚀 Starting %s... Dual mode: %s",
            self.app_config.bot_name,
            "enabled" if self.dual_mode else "disabled",
        )
        await self.start_session(SessionRole.PRIMARY)

        if not self.dual_mode:
            return

        logger.info("[SESSION MANAGER] 🔗 Starting dual mode...")
        try:
            await self.start_session(SessionRole.SECONDARY)
            await self.wait_until_ready()
            if self._stopped.is_set():
                return
            logger.info("[SESSION MANAGER] ✅ Dual mode ready! Both sessions are connected.")
        except FATAL_ERRORS:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("[SESSION MANAGER] ❌ Failed to start secondary session: %s", exc)
            task = self._reconnect_tasks.pop(SessionRole.SECONDARY, None)
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            secondary = self.sessions.pop(SessionRole.SECONDARY, None)
            if secondary is not None:
                await self._teardown(secondary)
                secondary.state = SessionState.CLOSED
            logger.warning("[SESSION MANAGER] ⚠️ Continuing with the primary session only.")

    async def wait_until_ready(self, timeout: float | None = None) -> None:
        """
        Wait until every started session has reached ``open``.

        Returns early if the manager stops first, re-raising the fatal error
        that stopped it. Raises :class:`asyncio.TimeoutError` on timeout.
        """
        ready = asyncio.ensure_future(asyncio.gather(*(session.ready.wait() for session in self.sessions.values())))
        stopped = asyncio.ensure_future(self._stopped.wait())
        try:
            done, _ = await asyncio.wait({ready, stopped}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in (ready, stopped):
                waiter.cancel()

        if ready in done:
            return
        if self.fatal_error is not None:
            raise self.fatal_error
        if not done:
            raise asyncio.TimeoutError()

    def dispatch_session(self) -> Session:
        """
        Pick the session whose identity handles the next inbound message.

        Alternates on every call; the secondary is only used in dual mode and
        while it is open, otherwise everything goes through the primary.
        """
        use_secondary = self._use_secondary
        self._use_secondary = not self._use_secondary

        secondary = self.sessions.get(SessionRole.SECONDARY)
        if self.dual_mode and use_secondary and secondary is not None and secondary.is_open and secondary.user_id:
            return secondary
        return self.sessions[SessionRole.PRIMARY]

    def dispatch_client(self) -> Optional[ProtocolClient]:
        return self.dispatch_session().client

    def _fail(self, exc: BaseException) -> None:
        logger.critical("[SESSION MANAGER] Unrecoverable error: %s", exc)
        self.fatal_error = exc
        self._stopped.set()

    async def run_until_stopped(self) -> None:
        """Block until shutdown; re-raise a fatal error hit during a reconnect."""
        await self._stopped.wait()
        if self.fatal_error is not None:
            raise self.fatal_error

    async def shutdown(self) -> None:
        """Stop reconnecting and close every session."""
        self._stopping = True
        current = asyncio.current_task()
        tasks = [task for task in self._reconnect_tasks.values() if not task.done() and task is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._reconnect_tasks.clear()

        for session in self.sessions.values():
            await self._teardown(session)
            session.state = SessionState.CLOSED
            session.ready.clear()

        self._stopped.set()
        logger.info("[SESSION MANAGER] All sessions closed")
