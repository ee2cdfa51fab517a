"""
Position Engine - Position State Machine.

============================================================
PURPOSE
============================================================
Manages position lifecycle with strict state transitions.

STATE MACHINE:

       (none)
         │ first buy
         ▼
       BOUGHT ◄──── accumulate / price poll
       │    ▲
  sell │    │ new buy (reopen)
       ▼    │
       SOLD ┘

       BOUGHT ──── sell retries exhausted ────► FAILED

INVARIANTS:
- FAILED is terminal; nothing leaves it automatically
- BOUGHT implies units_held > 0 and entry_price > 0
- Every change goes through one of the reducers below,
  which are applied inside PositionStore.update()

============================================================
"""

import logging
from decimal import Decimal
from typing import Dict, Optional, Set, Tuple

from core.exceptions import InvalidTransitionError

from .types import Position, PositionStatus, ZERO


logger = logging.getLogger(__name__)


# ============================================================
# STATE TRANSITION RULES
# ============================================================

# None stands for "no record yet"
VALID_TRANSITIONS: Dict[Optional[PositionStatus], Set[PositionStatus]] = {
    None: {
        PositionStatus.BOUGHT,
    },
    PositionStatus.BOUGHT: {
        PositionStatus.BOUGHT,
        PositionStatus.SOLD,
        PositionStatus.FAILED,
    },
    PositionStatus.SOLD: {
        PositionStatus.BOUGHT,
    },
    # Terminal
    PositionStatus.FAILED: set(),
}


# ============================================================
# STATE TRANSITION GUARD
# ============================================================

class TransitionGuard:
    """
    Guard for position status transitions.

    Ensures transitions are valid and provides reason for denial.
    """

    @staticmethod
    def can_transition(
        from_state: Optional[PositionStatus],
        to_state: PositionStatus,
    ) -> Tuple[bool, str]:
        """
        Check if transition is allowed.

        Args:
            from_state: Current status (None when no record exists)
            to_state: Target status

        Returns:
            Tuple of (allowed, reason)
        """
        valid_targets = VALID_TRANSITIONS.get(from_state, set())

        if to_state in valid_targets:
            return True, "Valid transition"

        if from_state is PositionStatus.FAILED:
            return False, "Cannot transition from terminal state Failed"

        source = from_state.value if from_state else "none"
        return False, f"Invalid transition: {source} -> {to_state.value}"

    @staticmethod
    def require(
        asset: str,
        from_state: Optional[PositionStatus],
        to_state: PositionStatus,
    ) -> None:
        """Raise InvalidTransitionError when the transition is not allowed."""
        allowed, reason = TransitionGuard.can_transition(from_state, to_state)
        if not allowed:
            raise InvalidTransitionError(
                f"{asset}: {reason}",
                from_state=from_state.value if from_state else None,
                to_state=to_state.value,
                reason=reason,
            )


# ============================================================
# REDUCERS
# ============================================================

def apply_buy_fill(
    current: Optional[Position],
    asset: str,
    amount: Decimal,
    tokens: Decimal,
    execution_price: Decimal,
) -> Position:
    """
    Merge a buy fill into the position.

    - no record: open a new Bought position
    - Sold: reopen with the new fill, clearing the close data
    - Bought: accumulate amount and units, keep the entry price
    """
    from_state = current.status if current else None
    TransitionGuard.require(asset, from_state, PositionStatus.BOUGHT)

    if current is None or current.status is PositionStatus.SOLD:
        if current is not None:
            logger.info(f"Reopening sold position {asset}")
        return Position(
            asset=asset,
            status=PositionStatus.BOUGHT,
            invested_amount=amount,
            units_held=tokens,
            entry_price=execution_price,
            last_observed_price=ZERO,
            exit_price=ZERO,
            proceeds=ZERO,
        )

    return current.evolve(
        invested_amount=current.invested_amount + amount,
        units_held=current.units_held + tokens,
    )


def apply_sell_fill(
    current: Position,
    quantity: Decimal,
    proceeds: Decimal,
    exit_price: Decimal,
) -> Position:
    """Close the position with the realized price and proceeds."""
    TransitionGuard.require(current.asset, current.status, PositionStatus.SOLD)

    remaining = current.units_held - quantity
    return current.evolve(
        status=PositionStatus.SOLD,
        units_held=remaining if remaining > 0 else ZERO,
        exit_price=exit_price,
        proceeds=proceeds,
    )


def mark_failed(current: Position) -> Position:
    """Park the position after sell retries are exhausted."""
    TransitionGuard.require(current.asset, current.status, PositionStatus.FAILED)
    return current.evolve(status=PositionStatus.FAILED)


def record_price(current: Position, price: Decimal) -> Position:
    """Store the latest polled price on an open position."""
    if not current.status.is_open:
        raise InvalidTransitionError(
            f"{current.asset}: price polled for a {current.status.value} position",
            from_state=current.status.value,
            to_state=PositionStatus.BOUGHT.value,
            reason="not open",
        )
    return current.evolve(last_observed_price=price)


__all__ = [
    "VALID_TRANSITIONS",
    "TransitionGuard",
    "apply_buy_fill",
    "apply_sell_fill",
    "mark_failed",
    "record_price",
]
