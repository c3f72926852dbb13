"""
DepositOrchestrator: per-asset deposit lifecycle driven against the remote
deposit/mint service.

Handles:
- Deposit address generation with cache invalidation
- Detection probing and confirmation tracking
- Minting of the synthetic token once a deposit is final
- The single poll task per asset (see DepositPoller)
- Local history records for deposits and mints

Architecture:
    The orchestrator owns every DepositRecord and is the only writer of
    them. Observers learn about changes through events on the EventBus;
    read access goes through `record()`, which returns a copy.

Session discipline:
    Service clients are rebuilt whenever the session generation changes.
    A reply that arrives after the session changed is discarded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set, TypeVar, Union

from ckfinance.assets import Asset, get_asset, to_display_units
from ckfinance.core.event_bus import Event, EventBus, EventType
from ckfinance.core.utils import normalize_tx_hash
from ckfinance.deposit.poller import DepositPoller, DepositPollerConfig
from ckfinance.deposit.state_machine import (
    DepositRecord,
    DepositStatus,
    can_retry,
    is_regression,
    plan_transition,
)
from ckfinance.errors import AuthError, NotFoundError, StaleSessionError, ValidationError
from ckfinance.history.history_store import LocalHistoryStore
from ckfinance.history.kv_store import AddressCache
from ckfinance.infra.json_utils import dumps
from ckfinance.infra.metrics import ClientMetrics
from ckfinance.pricing import Portfolio, PriceOracle, StaticPriceOracle, value_contribution
from ckfinance.rpc.interfaces import Channel, DepositService
from ckfinance.rpc.models import IsoDetails, UserContribution
from ckfinance.session.session_manager import SessionManager

log = logging.getLogger("ckfinance")

T = TypeVar("T")

DepositServiceFactory = Callable[[Channel], DepositService]


@dataclass
class DepositOrchestratorConfig:
    """Configuration for DepositOrchestrator."""
    status_interval_sec: float = 5.0
    detection_interval_sec: float = 10.0
    log_event_callback: Optional[Callable[..., None]] = None


class DepositOrchestrator:
    """
    Usage:
        orchestrator = DepositOrchestrator(session, bus, history, address_cache,
                                           service_factory=make_deposit_client)
        orchestrator.attach()

        address = await orchestrator.begin_deposit("BTC")   # generate + start polling
        ...
        if orchestrator.record("BTC").status is DepositStatus.READY:
            await orchestrator.mint_ck_tokens(orchestrator.record("BTC").amount)
    """

    def __init__(
        self,
        session: SessionManager,
        event_bus: EventBus,
        history: LocalHistoryStore,
        address_cache: AddressCache,
        service_factory: DepositServiceFactory,
        price_oracle: Optional[PriceOracle] = None,
        metrics: Optional[ClientMetrics] = None,
        config: Optional[DepositOrchestratorConfig] = None,
    ) -> None:
        self._session = session
        self._bus = event_bus
        self._history = history
        self._addresses = address_cache
        self._service_factory = service_factory
        self._oracle = price_oracle or StaticPriceOracle()
        self._metrics = metrics
        self.config = config or DepositOrchestratorConfig()
        self._log_event = self.config.log_event_callback or self._default_log

        self._service: Optional[DepositService] = None
        self._service_generation = -1

        self._records: Dict[str, DepositRecord] = {}
        self._pollers: Dict[str, DepositPoller] = {}
        self._in_flight: Set[str] = set()
        self._pending_calls = 0

        self.selected_asset: Optional[Asset] = None
        self.iso_details: Optional[IsoDetails] = None
        self.user_contribution: Optional[UserContribution] = None
        self.error: Optional[str] = None

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    # -------------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------------

    def attach(self) -> None:
        """Follow session changes published on the bus."""
        self._bus.subscribe(EventType.SESSION_CONNECTED, self._on_session_connected,
                            priority=10, name="deposit.session_connected")
        self._bus.subscribe(EventType.SESSION_DISCONNECTED, self._on_session_disconnected,
                            priority=10, name="deposit.session_disconnected")

    async def _on_session_connected(self, event: Event) -> None:
        await self._teardown()
        self._bind_service()
        await self.get_iso_details()

    async def _on_session_disconnected(self, event: Event) -> None:
        await self._teardown()
        self._service = None
        self._service_generation = -1

    async def _teardown(self) -> None:
        await self.stop_all_monitoring()
        for record in self._records.values():
            record.reset()
        self._in_flight.clear()
        self.user_contribution = None
        self.error = None

    def _bind_service(self) -> DepositService:
        channel = self._session.channel
        if channel is None:
            raise AuthError("Connect a wallet first.")
        self._service = self._service_factory(channel)
        self._service_generation = self._session.generation
        self._log_event("deposit_service_bound", generation=self._service_generation)
        return self._service

    def _require_service(self) -> DepositService:
        if not self._session.is_authenticated:
            raise AuthError("Connect a wallet first.")
        if self._service is None or self._service_generation != self._session.generation:
            return self._bind_service()
        return self._service

    async def _call(self, generation: int, awaitable: Awaitable[T]) -> T:
        """Await a remote call and reject its outcome if the session moved on."""
        try:
            result = await awaitable
        except Exception as exc:
            if generation != self._session.generation:
                raise StaleSessionError("reply from a previous session discarded") from exc
            raise
        self._session.ensure_current(generation)
        return result

    # -------------------------------------------------------------------------
    # Read state
    # -------------------------------------------------------------------------

    @property
    def loading(self) -> bool:
        return self._pending_calls > 0

    def record(self, asset_id: str) -> DepositRecord:
        """Copy of the asset's current DepositRecord."""
        return self._record(asset_id).snapshot()

    def is_polling(self, asset_id: str) -> bool:
        poller = self._pollers.get(asset_id)
        return poller is not None and poller.active

    def portfolio(self) -> Portfolio:
        return value_contribution(self.user_contribution, self._oracle)

    def _record(self, asset_id: str) -> DepositRecord:
        record = self._records.get(asset_id)
        if record is None:
            record = self._records[asset_id] = DepositRecord(asset_id=asset_id)
        return record

    @staticmethod
    def _resolve_asset(asset: Union[Asset, str]) -> Asset:
        resolved = asset if isinstance(asset, Asset) else get_asset(asset)
        if resolved is None:
            raise ValidationError(f"Unsupported asset: {asset}")
        return resolved

    # -------------------------------------------------------------------------
    # Status bookkeeping
    # -------------------------------------------------------------------------

    async def _set_status(self, record: DepositRecord, target: DepositStatus, force: bool = False) -> bool:
        if force:
            steps = [target] if record.status != target else []
        else:
            steps = plan_transition(record.status, target)
            if not steps and target != record.status:
                self._log_event(
                    "deposit_status_ignored",
                    asset_id=record.asset_id,
                    current=record.status.value,
                    reported=target.value,
                    regression=is_regression(record.status, target),
                )
        for step in steps:
            previous = record.status
            record.status = step
            record.history.append(step)
            if self._metrics:
                self._metrics.deposit_transitions.labels(asset=record.asset_id, status=step.value).inc()
            self._log_event("deposit_status_changed", asset_id=record.asset_id,
                            previous=previous.value, status=step.value)
            await self._bus.emit(
                EventType.DEPOSIT_STATUS_CHANGED,
                source="deposit",
                asset_id=record.asset_id,
                previous=previous.value,
                status=step.value,
                confirmations=record.confirmations,
                required=record.required_confirmations,
                amount=record.amount,
            )
        return bool(steps)

    async def _reset_record(self, asset_id: str) -> None:
        await self._stop_poller(asset_id)
        self._record(asset_id).reset()
        await self._bus.emit(EventType.DEPOSIT_RESET, source="deposit", asset_id=asset_id)

    async def _select(self, asset: Asset) -> None:
        previous = self.selected_asset
        if previous is not None and previous.id != asset.id:
            await self._stop_poller(previous.id)
        self.selected_asset = asset

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def generate_deposit_address(self, asset_id: str) -> Optional[str]:
        """
        Replace the deposit address for `asset_id` with a freshly generated one.

        Returns the address, or None if the remote call failed (status FAILED,
        `error` set) or the session changed while it was in flight.

        Raises:
            AuthError: no authenticated session
            ValidationError: unknown asset
        """
        asset = self._resolve_asset(asset_id)
        service = self._require_service()
        generation = self._session.generation

        await self._select(asset)
        # Old address must be unreachable before the new one is requested.
        await self._reset_record(asset.id)
        self._addresses.invalidate(asset.id)
        record = self._record(asset.id)

        self._pending_calls += 1
        self.error = None
        await self._set_status(record, DepositStatus.PENDING)
        try:
            address = await self._call(generation, service.generate_deposit_address(asset.id))
        except StaleSessionError:
            return None
        except Exception as exc:
            self.error = "Failed to generate deposit address. Please try again."
            self._log_event("deposit_address_error", asset_id=asset.id, error=str(exc))
            await self._set_status(record, DepositStatus.FAILED)
            return None
        finally:
            self._pending_calls -= 1

        record.address = address
        self._addresses.set(asset.id, address)
        await self._set_status(record, DepositStatus.NONE)
        self._log_event("deposit_address_generated", asset_id=asset.id, address=address)
        await self._bus.emit(EventType.DEPOSIT_ADDRESS_GENERATED, source="deposit",
                             asset_id=asset.id, address=address)
        return address

    async def monitor_deposits(self, asset_id: str) -> Optional[str]:
        """
        Check once for an inbound transaction to the asset's deposit address.

        Returns the transaction hash once one is known, else None.

        Raises:
            AuthError: no authenticated session
            NotFoundError: no deposit address generated yet
        """
        asset = self._resolve_asset(asset_id)
        service = self._require_service()
        record = self._record(asset.id)
        if not record.address:
            raise NotFoundError(f"No deposit address for {asset.id}; generate one first.")
        if asset.id in self._in_flight:
            self._skip_tick(asset.id)
            return record.tx_hash

        if self.selected_asset is None or self.selected_asset.id != asset.id:
            await self._select(asset)

        generation = self._session.generation
        self._in_flight.add(asset.id)
        self._pending_calls += 1
        self.error = None
        try:
            await self._set_status(record, DepositStatus.DETECTING, force=can_retry(record.status))
            try:
                raw = await self._call(generation, service.monitor_deposits(asset.id))
            except StaleSessionError:
                return None
            except Exception as exc:
                self.error = "Failed to monitor deposits. Please try again."
                self._log_event("deposit_monitor_error", asset_id=asset.id, error=str(exc))
                await self._set_status(record, DepositStatus.FAILED)
                return None

            tx_hash = normalize_tx_hash(raw)
            if tx_hash is None:
                self._log_event("deposit_not_detected", asset_id=asset.id)
                return None

            if record.tx_hash != tx_hash:
                record.tx_hash = tx_hash
                self._log_event("deposit_detected", asset_id=asset.id, tx_hash=tx_hash)
                await self._add_history("deposit", asset.id, 0, tx_hash, DepositStatus.DETECTING.value)
                await self._bus.emit(EventType.DEPOSIT_DETECTED, source="deposit",
                                     asset_id=asset.id, tx_hash=tx_hash)

            await self._check_status(service, asset.id, tx_hash)
            return tx_hash
        finally:
            self._pending_calls -= 1
            self._in_flight.discard(asset.id)

    async def check_deposit_status(self, asset_id: str, tx_hash: Optional[str]) -> Optional[DepositRecord]:
        """
        Refresh confirmation progress for `tx_hash`.

        Idempotent: an unchanged remote answer leaves the record as it was and
        produces no further notification. Returns a copy of the record, or
        None when the check failed, was skipped or went stale.

        Raises:
            AuthError: no authenticated session
            NotFoundError: empty tx hash, or no deposit address for the asset
        """
        if not tx_hash:
            raise NotFoundError("A transaction hash is required to check deposit status.")
        asset = self._resolve_asset(asset_id)
        service = self._require_service()
        if not self._record(asset.id).address:
            raise NotFoundError(f"No deposit address for {asset.id}; generate one first.")
        if asset.id in self._in_flight:
            self._skip_tick(asset.id)
            return None

        self._in_flight.add(asset.id)
        try:
            return await self._check_status(service, asset.id, tx_hash)
        finally:
            self._in_flight.discard(asset.id)

    async def _check_status(self, service: DepositService, asset_id: str, tx_hash: str) -> Optional[DepositRecord]:
        record = self._record(asset_id)
        generation = self._session.generation

        self._pending_calls += 1
        self.error = None
        try:
            result = await self._call(generation, service.check_deposit_status(asset_id, tx_hash))
        except StaleSessionError:
            return None
        except Exception as exc:
            # The poll keeps running; a failed check does not fail the deposit.
            self.error = "Failed to check deposit status. Please try again."
            self._log_event("deposit_status_error", asset_id=asset_id, tx_hash=tx_hash, error=str(exc))
            return None
        finally:
            self._pending_calls -= 1

        if record.tx_hash is None:
            record.tx_hash = tx_hash
        elif record.tx_hash != tx_hash:
            self._log_event("deposit_status_discarded", asset_id=asset_id, tx_hash=tx_hash,
                            current_tx_hash=record.tx_hash)
            return None

        target = DepositStatus.parse(result.status)
        was_ready = record.status == DepositStatus.READY

        record.confirmations = result.confirmations
        record.required_confirmations = result.required
        record.amount = result.amount
        if target is None:
            self._log_event("deposit_status_unknown", asset_id=asset_id, reported=result.status)
        else:
            await self._set_status(record, target)

        existing = self._history.find_by_tx_hash(tx_hash)
        if existing is not None and (existing.status != record.status.value or existing.amount != record.amount):
            self._history.update_record(existing.id, status=record.status.value, amount=record.amount)

        await self._bus.emit(
            EventType.DEPOSIT_STATUS_CHECKED,
            source="deposit",
            asset_id=asset_id,
            tx_hash=tx_hash,
            status=record.status.value,
            confirmations=record.confirmations,
            required=record.required_confirmations,
            amount=record.amount,
        )

        if record.status == DepositStatus.READY and not was_ready:
            await self._on_ready(record)
        return record.snapshot()

    async def _on_ready(self, record: DepositRecord) -> None:
        await self._stop_poller(record.asset_id)
        old_balance = self._contributed(record.asset_id)
        await self.get_user_contribution()
        asset = get_asset(record.asset_id)
        new_balance = to_display_units(record.amount, asset) if asset else record.amount
        self._log_event("deposit_ready", asset_id=record.asset_id, amount=record.amount)
        await self._bus.emit(EventType.DEPOSIT_READY, source="deposit",
                             asset_id=record.asset_id, amount=record.amount, tx_hash=record.tx_hash)
        await self._bus.emit(EventType.PORTFOLIO_UPDATED, source="deposit", asset_id=record.asset_id,
                             old_balance=old_balance, new_balance=str(new_balance))

    def _contributed(self, asset_id: str) -> str:
        asset = get_asset(asset_id)
        amount = 0
        if self.user_contribution is not None:
            amount = sum(a for aid, a in self.user_contribution.deposits if aid == asset_id)
        return str(to_display_units(amount, asset)) if asset else str(amount)

    async def mint_ck_tokens(self, amount: int) -> bool:
        """
        Mint the synthetic token for the selected asset.

        Raises:
            NotFoundError: no selected asset, or no deposit address for it
            AuthError: no authenticated session
            ValidationError: amount is not a positive integer
        """
        asset = self.selected_asset
        if asset is None:
            raise NotFoundError("Select an asset before minting.")
        service = self._require_service()
        record = self._record(asset.id)
        if not record.address:
            raise NotFoundError(f"No deposit address for {asset.id}; generate one first.")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Mint amount must be a positive integer in base units.")

        generation = self._session.generation
        self._pending_calls += 1
        self.error = None
        try:
            ok = await self._call(generation, service.mint_ck_token(asset.id, amount))
        except StaleSessionError:
            return False
        except Exception as exc:
            self.error = "Failed to mint ck-tokens. Please try again."
            self._log_event("mint_error", asset_id=asset.id, amount=amount, error=str(exc))
            await self._set_status(record, DepositStatus.FAILED, force=True)
            return False
        finally:
            self._pending_calls -= 1

        if not ok:
            self.error = "Failed to mint tokens. Please try again."
            self._log_event("mint_rejected", asset_id=asset.id, amount=amount)
            return False

        # Neutral again: the address stays valid for the next deposit.
        await self._stop_poller(asset.id)
        record.amount = 0
        record.confirmations = 0
        record.required_confirmations = 0
        record.tx_hash = None
        record.status = DepositStatus.NONE
        record.history = []
        await self._add_history("mint", asset.id, amount, None, "completed")
        self._log_event("mint_completed", asset_id=asset.id, amount=amount)
        await self._bus.emit(EventType.DEPOSIT_MINTED, source="deposit", asset_id=asset.id, amount=amount)
        await self._bus.emit(EventType.DEPOSIT_RESET, source="deposit", asset_id=asset.id)
        return True

    async def get_iso_details(self) -> Optional[IsoDetails]:
        service = self._require_service()
        generation = self._session.generation
        self._pending_calls += 1
        self.error = None
        try:
            self.iso_details = await self._call(generation, service.get_iso_details())
        except StaleSessionError:
            return None
        except Exception as exc:
            self.error = "Failed to get ISO details. Please try again."
            self._log_event("iso_details_error", error=str(exc))
            return None
        finally:
            self._pending_calls -= 1
        return self.iso_details

    async def get_user_contribution(self) -> Optional[UserContribution]:
        service = self._require_service()
        generation = self._session.generation
        self._pending_calls += 1
        try:
            self.user_contribution = await self._call(generation, service.get_user_contribution())
        except StaleSessionError:
            return None
        except Exception as exc:
            self.error = "Failed to get user contribution. Please try again."
            self._log_event("user_contribution_error", error=str(exc))
            return None
        finally:
            self._pending_calls -= 1
        return self.user_contribution

    async def select_asset(self, asset: Union[Asset, str]) -> Asset:
        """Switch the selected asset and clear its transient deposit fields."""
        resolved = self._resolve_asset(asset)
        await self._select(resolved)
        await self._reset_record(resolved.id)
        self.error = None
        return resolved

    async def reset_deposit(self) -> None:
        """Clear the selected asset's transient deposit fields. History is kept."""
        if self.selected_asset is not None:
            await self._reset_record(self.selected_asset.id)
        self.error = None

    async def begin_deposit(self, asset_id: str) -> Optional[str]:
        """Generate a fresh address and start watching it."""
        address = await self.generate_deposit_address(asset_id)
        if address:
            await self.start_monitoring(asset_id)
        return address

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    async def start_monitoring(self, asset_id: str) -> None:
        """Start (or replace) the poll task for `asset_id`."""
        asset = self._resolve_asset(asset_id)
        self._require_service()
        if not self._record(asset.id).address:
            raise NotFoundError(f"No deposit address for {asset.id}; generate one first.")
        if self.selected_asset is None or self.selected_asset.id != asset.id:
            await self._select(asset)
        await self._stop_poller(asset.id)

        poller = DepositPoller(
            asset_id=asset.id,
            tick=lambda: self._poll_tick(asset.id),
            has_tx_hash=lambda: self._record(asset.id).tx_hash is not None,
            config=DepositPollerConfig(
                status_interval_sec=self.config.status_interval_sec,
                detection_interval_sec=self.config.detection_interval_sec,
            ),
            log_event=self._log_event,
        )
        self._pollers[asset.id] = poller
        poller.start()

    async def stop_all_monitoring(self) -> None:
        for asset_id in list(self._pollers):
            await self._stop_poller(asset_id)

    async def _stop_poller(self, asset_id: str) -> None:
        poller = self._pollers.pop(asset_id, None)
        if poller is not None:
            await poller.stop()

    def _skip_tick(self, asset_id: str) -> None:
        if self._metrics:
            self._metrics.poll_ticks_skipped.labels(asset=asset_id).inc()
        self._log_event("deposit_poll_skipped", asset_id=asset_id)

    async def _poll_tick(self, asset_id: str) -> bool:
        """One poll step. Returns False once polling should stop."""
        if not self._session.is_authenticated:
            return False
        if self.selected_asset is None or self.selected_asset.id != asset_id:
            return False
        record = self._record(asset_id)
        if record.status.is_terminal or not record.address:
            return False
        if asset_id in self._in_flight:
            self._skip_tick(asset_id)
            return True

        if record.tx_hash:
            await self.check_deposit_status(asset_id, record.tx_hash)
        else:
            await self.monitor_deposits(asset_id)
        return not self._record(asset_id).status.is_terminal

    async def _add_history(self, type: str, asset_id: str, amount: int, tx_hash: Optional[str], status: str) -> str:
        record_id = self._history.add_record(type, asset_id, amount, tx_hash, status)
        await self._bus.emit(EventType.HISTORY_RECORD_ADDED, source="deposit", record_id=record_id,
                             type=type, asset_id=asset_id, amount=amount, tx_hash=tx_hash, status=status)
        return record_id
