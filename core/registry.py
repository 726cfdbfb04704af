"""Operation family registry for Bubuverse Farm.

Maps human-friendly operation names (as accepted by ``--mode``) to their
implementing :class:`~operations.base.OperationFamily` classes.

Usage::

    from core.registry import get_operation_class

    cls = get_operation_class("stake")
    if cls:
        family = cls(settings)
"""

from typing import Dict, List, Optional

from operations.checkin import CheckinOperation
from operations.stake import StakeOperation
from operations.unlock import UnlockOperation

# ---------------------------------------------------------------------------
# Central Registry
# ---------------------------------------------------------------------------
OPERATION_REGISTRY: Dict[str, type] = {
    "checkin": CheckinOperation,
    "check-in": CheckinOperation,
    "daily": CheckinOperation,
    "unlock": UnlockOperation,
    "open": UnlockOperation,
    "box": UnlockOperation,
    "stake": StakeOperation,
}

# Canonical names, in the order a full daily cycle runs them
OPERATION_ORDER: List[str] = ["checkin", "unlock", "stake"]


def get_operation_class(name: str) -> Optional[type]:
    """Resolve an operation family class from the registry by name.

    Performs case-insensitive lookup.

    Args:
        name: Operation identifier (e.g. ``"checkin"``, ``"box"``).

    Returns:
        The family class, or ``None`` if *name* is not registered.
    """
    return OPERATION_REGISTRY.get(name.lower())
