from ckfinance.deposit.orchestrator import DepositOrchestrator, DepositOrchestratorConfig, DepositServiceFactory
from ckfinance.deposit.poller import DepositPoller, DepositPollerConfig
from ckfinance.deposit.state_machine import (
    VALID_TRANSITIONS,
    DepositRecord,
    DepositStatus,
    can_retry,
    can_transition,
    is_regression,
    plan_transition,
)

__all__ = [
    "DepositOrchestrator",
    "DepositOrchestratorConfig",
    "DepositServiceFactory",
    "DepositPoller",
    "DepositPollerConfig",
    "DepositRecord",
    "DepositStatus",
    "VALID_TRANSITIONS",
    "can_retry",
    "can_transition",
    "is_regression",
    "plan_transition",
]
