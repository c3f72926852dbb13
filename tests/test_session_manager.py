"""
Tests for SessionManager.
"""
import pytest

from ckfinance.core.event_bus import EventType
from ckfinance.errors import AuthError, StaleSessionError
from ckfinance.session.session_manager import SessionState


class TestConnect:

    @pytest.mark.asyncio
    async def test_connect_logs_in_and_binds_channel(self, session, identity_provider, bus, channels):
        identity = await session.connect()

        assert identity.principal == "user-1"
        assert identity_provider.login_calls == 1
        assert session.state is SessionState.CONNECTED
        assert session.is_authenticated
        assert session.channel is channels[0]
        assert session.generation == 1
        events = bus.get_history(EventType.SESSION_CONNECTED)
        assert events[0].data == {"principal": "user-1", "generation": 1}

    @pytest.mark.asyncio
    async def test_existing_credential_skips_login(self, session, identity_provider):
        identity_provider.authenticated = True

        await session.connect()

        assert identity_provider.login_calls == 0
        assert session.principal == "user-1"

    @pytest.mark.asyncio
    async def test_connect_twice_is_noop(self, session, channels):
        await session.connect()
        await session.connect()

        assert len(channels) == 1
        assert session.generation == 1

    @pytest.mark.asyncio
    async def test_failed_login_returns_to_disconnected(self, session, identity_provider, bus):
        identity_provider.fail_login = True

        with pytest.raises(AuthError):
            await session.connect()

        assert session.state is SessionState.DISCONNECTED
        assert session.channel is None
        assert session.identity is None
        assert session.last_error == "Failed to connect wallet. Please try again."
        assert not session.loading
        assert len(bus.get_history(EventType.SESSION_AUTH_FAILED)) == 1

    @pytest.mark.asyncio
    async def test_channel_factory_error_becomes_auth_error(self, identity_provider, bus):
        from ckfinance.session.session_manager import SessionManager

        def broken_factory(identity):
            raise RuntimeError("no route to host")

        session = SessionManager(identity_provider, broken_factory, bus)

        with pytest.raises(AuthError):
            await session.connect()
        assert session.state is SessionState.DISCONNECTED


class TestDisconnect:

    @pytest.mark.asyncio
    async def test_disconnect_clears_everything(self, session, identity_provider, channels, bus):
        await session.connect()

        await session.disconnect()

        assert session.state is SessionState.DISCONNECTED
        assert session.identity is None
        assert session.channel is None
        assert channels[0].closed
        assert identity_provider.logout_calls == 1
        assert session.generation == 2
        assert len(bus.get_history(EventType.SESSION_DISCONNECTED)) == 1

    @pytest.mark.asyncio
    async def test_disconnect_without_logout_allows_restore(self, session, identity_provider, channels):
        await session.connect()

        await session.disconnect(logout=False)

        assert session.state is SessionState.DISCONNECTED
        assert channels[0].closed
        assert identity_provider.logout_calls == 0
        assert await session.restore()
        assert identity_provider.login_calls == 1
        assert session.is_authenticated

    @pytest.mark.asyncio
    async def test_disconnect_when_disconnected_is_noop(self, session, identity_provider, bus):
        await session.disconnect()

        assert identity_provider.logout_calls == 0
        assert session.generation == 0
        assert bus.get_history(EventType.SESSION_DISCONNECTED) == []

    @pytest.mark.asyncio
    async def test_reconnect_discards_old_channel(self, session, channels):
        await session.connect()
        await session.disconnect()
        await session.connect()

        assert len(channels) == 2
        assert session.channel is channels[1]
        assert session.generation == 3


class TestGeneration:

    @pytest.mark.asyncio
    async def test_ensure_current(self, session):
        await session.connect()
        generation = session.generation

        session.ensure_current(generation)
        await session.disconnect()

        with pytest.raises(StaleSessionError):
            session.ensure_current(generation)

    @pytest.mark.asyncio
    async def test_restore_without_credential(self, session, identity_provider):
        assert await session.restore() is False
        assert identity_provider.login_calls == 0

    @pytest.mark.asyncio
    async def test_restore_with_credential(self, session, identity_provider):
        identity_provider.authenticated = True

        assert await session.restore() is True
        assert session.is_authenticated
        assert identity_provider.login_calls == 0
