"""
Composition root: builds every component from Settings and wires them
through the event bus.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, Optional

from ckfinance.config.config import Settings
from ckfinance.core.event_bus import EventBus
from ckfinance.deposit.orchestrator import DepositOrchestrator, DepositOrchestratorConfig
from ckfinance.history.history_store import LocalHistoryStore
from ckfinance.history.kv_store import AddressCache, KeyValueStore
from ckfinance.infra.logging_cfg import LOGGER_NAME, build_logger, log_event
from ckfinance.infra.metrics import ClientMetrics
from ckfinance.notifications.dispatcher import NotificationDispatcher
from ckfinance.notifications.sinks import LogSink, NotificationSink, WebhookSink
from ckfinance.pricing import PriceOracle, StaticPriceOracle
from ckfinance.rpc.channel import HttpChannel
from ckfinance.rpc.clients import DepositServiceClient, OrderBookClient, TokenLedgerClient
from ckfinance.rpc.identity import HttpIdentityProvider
from ckfinance.rpc.interfaces import Channel, IdentityProvider, TokenBalanceService
from ckfinance.rpc.models import Identity
from ckfinance.session.session_manager import SessionManager
from ckfinance.trading.trading_session import OrderTradingSession


@dataclass
class ChainKeyClient:
    settings: Settings
    logger: logging.Logger
    metrics: ClientMetrics
    bus: EventBus
    store: KeyValueStore
    history: LocalHistoryStore
    addresses: AddressCache
    dispatcher: NotificationDispatcher
    session: SessionManager
    deposits: DepositOrchestrator
    trading: OrderTradingSession

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        identity_provider: Optional[IdentityProvider] = None,
        sink: Optional[NotificationSink] = None,
        price_oracle: Optional[PriceOracle] = None,
        login_hook: Optional[Callable[[str], Any]] = None,
    ) -> "ChainKeyClient":
        logger = build_logger(LOGGER_NAME, level=settings.log_level_value, file_path=settings.log_file)
        emit_log: Callable[..., None] = partial(log_event, logger)
        metrics = ClientMetrics()
        bus = EventBus(log_event=emit_log)

        store = KeyValueStore(settings.state_dir)
        history = LocalHistoryStore(store)
        history.load()
        addresses = AddressCache(store)

        if sink is None:
            if settings.alert_webhook_url:
                sink = WebhookSink(settings.alert_webhook_url, webhook_type=settings.alert_webhook_type,
                                   timeout=settings.rpc_timeout_sec)
            else:
                sink = LogSink()
        dispatcher = NotificationDispatcher(sink=sink, enabled=settings.notifications_enabled,
                                            log_event=emit_log)

        if identity_provider is None:
            identity_provider = HttpIdentityProvider(
                settings.identity_url,
                credential_path=os.path.join(settings.state_dir, "identity.json"),
                timeout=settings.rpc_timeout_sec,
                login_hook=login_hook,
            )

        def channel_factory(identity: Identity) -> Channel:
            return HttpChannel(settings.host, identity, timeout=settings.rpc_timeout_sec,
                               retries=settings.rpc_retries, metrics=metrics, log_event=emit_log)

        def token_factory(channel: Channel) -> Dict[str, TokenBalanceService]:
            return {name: TokenLedgerClient(channel, service_id)
                    for name, service_id in settings.token_service_ids.items()}

        session = SessionManager(identity_provider, channel_factory, bus, log_event=emit_log)

        if price_oracle is None:
            price_oracle = StaticPriceOracle({"BTC": settings.price_btc_usd, "ETH": settings.price_eth_usd})
        deposits = DepositOrchestrator(
            session,
            bus,
            history,
            addresses,
            service_factory=lambda ch: DepositServiceClient(ch, settings.deposit_service_id),
            price_oracle=price_oracle,
            metrics=metrics,
            config=DepositOrchestratorConfig(
                status_interval_sec=settings.status_poll_interval_sec,
                detection_interval_sec=settings.detection_poll_interval_sec,
                log_event_callback=emit_log,
            ),
        )
        trading = OrderTradingSession(
            session,
            bus,
            order_book_factory=lambda ch: OrderBookClient(ch, settings.order_book_service_id),
            token_factory=token_factory,
            metrics=metrics,
            log_event=emit_log,
        )

        deposits.attach()
        trading.attach()
        dispatcher.attach(bus)

        return cls(
            settings=settings,
            logger=logger,
            metrics=metrics,
            bus=bus,
            store=store,
            history=history,
            addresses=addresses,
            dispatcher=dispatcher,
            session=session,
            deposits=deposits,
            trading=trading,
        )

    async def start(self) -> bool:
        """Resume a persisted session if the identity provider still holds one."""
        log_event(self.logger, "client_start", network=self.settings.network, host=self.settings.host)
        return await self.session.restore()

    async def close(self) -> None:
        """Tear the session down (keeping the stored credential) and flush notifications."""
        await self.deposits.stop_all_monitoring()
        await self.session.disconnect(logout=False)
        await self.dispatcher.close()
        log_event(self.logger, "client_closed", stats=self.bus.get_stats())
