"""
SessionManager: owns the authenticated channel and identity handle.

State machine:

    DISCONNECTED ──connect()──> CONNECTING ──ok──> CONNECTED
         ^                          │                  │
         └────────── failure ───────┘            disconnect()
         ^                                             │
         └─────────────── DISCONNECTING <──────────────┘

Every transition into or out of CONNECTED bumps `generation`. Components
capture the generation when they start a remote call and discard the reply
if it has changed by the time the call returns.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional

from ckfinance.core.event_bus import EventBus, EventType
from ckfinance.errors import AuthError, StaleSessionError
from ckfinance.infra.json_utils import dumps
from ckfinance.rpc.interfaces import Channel, IdentityProvider
from ckfinance.rpc.models import Identity

log = logging.getLogger("ckfinance")

ChannelFactory = Callable[[Identity], Channel]


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


class SessionManager:
    """
    Single live session per client instance.

    Usage:
        session = SessionManager(identity_provider, channel_factory, bus)
        await session.connect()
        channel = session.channel
        ...
        await session.disconnect()
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        channel_factory: ChannelFactory,
        event_bus: EventBus,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self._provider = identity_provider
        self._channel_factory = channel_factory
        self._bus = event_bus
        self._log_event = log_event or self._default_log

        self._state = SessionState.DISCONNECTED
        self._identity: Optional[Identity] = None
        self._channel: Optional[Channel] = None
        self._generation = 0
        self._lock = asyncio.Lock()

        self.last_error: Optional[str] = None
        self.loading = False

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    # -------------------------------------------------------------------------
    # Read state
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._state == SessionState.CONNECTED

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity if self.is_authenticated else None

    @property
    def principal(self) -> Optional[str]:
        identity = self.identity
        return identity.principal if identity else None

    @property
    def channel(self) -> Optional[Channel]:
        return self._channel if self.is_authenticated else None

    @property
    def generation(self) -> int:
        return self._generation

    def ensure_current(self, generation: int) -> None:
        """Raise StaleSessionError if the session changed since `generation`."""
        if generation != self._generation or not self.is_authenticated:
            raise StaleSessionError(
                f"session changed (started in generation {generation}, now {self._generation})"
            )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def restore(self) -> bool:
        """Establish the session from an existing credential, without login."""
        if self.is_authenticated:
            return True
        if not await self._provider.is_authenticated():
            return False
        try:
            await self.connect()
        except AuthError:
            return False
        return True

    async def connect(self) -> Identity:
        """
        Authenticate and bind a fresh channel.

        Raises:
            AuthError: the identity provider or channel construction failed;
                the session stays DISCONNECTED and `last_error` is set.
        """
        async with self._lock:
            if self._state == SessionState.CONNECTED and self._identity is not None:
                return self._identity

            self._state = SessionState.CONNECTING
            self.loading = True
            self.last_error = None
            await self._discard_channel()
            try:
                if await self._provider.is_authenticated():
                    identity = self._provider.get_identity()
                else:
                    identity = None
                if identity is None:
                    identity = await self._provider.login()
                channel = self._channel_factory(identity)
            except Exception as exc:
                self._state = SessionState.DISCONNECTED
                self._identity = None
                self.last_error = "Failed to connect wallet. Please try again."
                self._log_event("session_connect_error", error=str(exc), error_type=type(exc).__name__)
                await self._bus.emit(EventType.SESSION_AUTH_FAILED, source="session", error=str(exc))
                if isinstance(exc, AuthError):
                    raise
                raise AuthError(f"authentication failed: {exc}", cause=exc) from exc
            finally:
                self.loading = False

            self._identity = identity
            self._channel = channel
            self._generation += 1
            self._state = SessionState.CONNECTED
            self._log_event("session_connected", principal=identity.principal, generation=self._generation)

        await self._bus.emit(
            EventType.SESSION_CONNECTED,
            source="session",
            principal=identity.principal,
            generation=self._generation,
        )
        return identity

    async def disconnect(self, logout: bool = True) -> None:
        """
        Revoke the channel and clear the identity. No-op when disconnected.

        With logout=False the provider keeps its credential, so a later
        `restore()` can resume without an interactive login.
        """
        async with self._lock:
            if self._state == SessionState.DISCONNECTED:
                return

            self._state = SessionState.DISCONNECTING
            self.loading = True
            self.last_error = None
            try:
                if logout:
                    await self._provider.logout()
            except Exception as exc:
                self.last_error = "Failed to disconnect wallet. Please try again."
                self._log_event("session_logout_error", error=str(exc))
            finally:
                await self._discard_channel()
                self._identity = None
                self._generation += 1
                self._state = SessionState.DISCONNECTED
                self.loading = False
            self._log_event("session_disconnected", generation=self._generation, logout=logout)

        await self._bus.emit(EventType.SESSION_DISCONNECTED, source="session", generation=self._generation)

    async def _discard_channel(self) -> None:
        channel, self._channel = self._channel, None
        if channel is None:
            return
        try:
            await channel.close()
        except Exception as exc:
            self._log_event("session_channel_close_error", error=str(exc))
