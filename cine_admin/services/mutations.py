"""Write helpers shared by the command line and the live view."""

import logging
from typing import Callable, Optional, TypeVar

from ..utils.error_handling import WriteError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def attempt_mutation(
    mutation: Callable[[], T],
    rollback: Optional[Callable[[], None]] = None,
) -> T:
    """Run a write and undo local state if it is rejected.

    Args:
        mutation: Performs the write and returns its result
        rollback: Restores whatever the caller changed before the write
            (an edited form, an optimistic selection); runs once on WriteError

    Returns:
        Result of ``mutation``

    Raises:
        WriteError: Re-raised after the rollback ran
    """
    try:
        return mutation()
    except WriteError:
        if rollback is not None:
            try:
                rollback()
            except Exception:
                logger.exception("Rollback after failed write raised")
        raise
