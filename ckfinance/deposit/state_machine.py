"""
Deposit lifecycle for one asset.

    NONE ──generate──> PENDING ──address──> NONE ──monitor──> DETECTING
                                                                 │
                                             CONFIRMING <────────┤
                                                 │               │
                                                 └────> READY <──┘

FAILED is reachable from every non-terminal state. READY and FAILED are
terminal for remote reports and stop polling. A reset (new address, asset
change, explicit reset) starts a new cycle; an explicit detection retry
leaves FAILED for DETECTING and keeps the address.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class DepositStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    DETECTING = "detecting"
    CONFIRMING = "confirming"
    READY = "ready"
    FAILED = "failed"

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["DepositStatus"]:
        if raw is None:
            return None
        try:
            return cls(str(raw).lower())
        except ValueError:
            return None

    @property
    def is_terminal(self) -> bool:
        return self in (DepositStatus.READY, DepositStatus.FAILED)


VALID_TRANSITIONS: Dict[DepositStatus, Tuple[DepositStatus, ...]] = {
    DepositStatus.NONE: (DepositStatus.PENDING, DepositStatus.DETECTING, DepositStatus.FAILED),
    DepositStatus.PENDING: (DepositStatus.NONE, DepositStatus.DETECTING, DepositStatus.FAILED),
    DepositStatus.DETECTING: (DepositStatus.CONFIRMING, DepositStatus.READY, DepositStatus.FAILED),
    DepositStatus.CONFIRMING: (DepositStatus.READY, DepositStatus.FAILED),
    DepositStatus.READY: (),
    DepositStatus.FAILED: (),
}

# Forward order used to tell progress from regression.
_RANK = {
    DepositStatus.NONE: 0,
    DepositStatus.PENDING: 1,
    DepositStatus.DETECTING: 2,
    DepositStatus.CONFIRMING: 3,
    DepositStatus.READY: 4,
}


def can_transition(current: DepositStatus, target: DepositStatus) -> bool:
    return target in VALID_TRANSITIONS[current]


def plan_transition(current: DepositStatus, target: DepositStatus) -> List[DepositStatus]:
    """
    Steps needed to move from `current` toward a remotely reported `target`.

    Returns [] when the target is the current status, a regression, or not
    reachable. A jump from before DETECTING straight to CONFIRMING/READY is
    routed through DETECTING.
    """
    if target == current:
        return []
    if can_transition(current, target):
        return [target]
    if current in (DepositStatus.NONE, DepositStatus.PENDING) and target in (
        DepositStatus.CONFIRMING,
        DepositStatus.READY,
    ):
        return [DepositStatus.DETECTING, target]
    return []


def can_retry(current: DepositStatus) -> bool:
    """True when an explicit detection retry may move `current` back to DETECTING."""
    return current is DepositStatus.FAILED


def is_regression(current: DepositStatus, target: DepositStatus) -> bool:
    if current not in _RANK or target not in _RANK:
        return False
    return _RANK[target] < _RANK[current]


@dataclass
class DepositRecord:
    """Client-observable state of one asset's deposit cycle."""
    asset_id: str
    address: Optional[str] = None
    status: DepositStatus = DepositStatus.NONE
    confirmations: int = 0
    required_confirmations: int = 0
    amount: int = 0
    tx_hash: Optional[str] = None
    history: List[DepositStatus] = field(default_factory=list)

    def reset(self) -> None:
        self.address = None
        self.status = DepositStatus.NONE
        self.confirmations = 0
        self.required_confirmations = 0
        self.amount = 0
        self.tx_hash = None
        self.history = []

    def snapshot(self) -> "DepositRecord":
        return DepositRecord(
            asset_id=self.asset_id,
            address=self.address,
            status=self.status,
            confirmations=self.confirmations,
            required_confirmations=self.required_confirmations,
            amount=self.amount,
            tx_hash=self.tx_hash,
            history=list(self.history),
        )
