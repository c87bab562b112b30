"""Penalty recalculation hook invoked after balance-affecting changes."""

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class PenaltyCalculator(Protocol):
    """Recomputes a patron's standing penalties (fines thresholds, blocks)."""

    def calculate_penalties(self, user_id: int, org_id: int, context: Any = None) -> None:
        ...


class NullPenaltyCalculator:
    """Used when no penalty engine is wired in; records the request only."""

    def calculate_penalties(self, user_id: int, org_id: int, context: Any = None) -> None:
        logger.debug("No penalty engine configured; skipping user %d at org %d", user_id, org_id)


__all__ = ["PenaltyCalculator", "NullPenaltyCalculator"]
