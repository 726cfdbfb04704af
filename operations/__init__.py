"""
Operations module for Bubuverse Farm.

Each operation family inherits from :class:`OperationFamily` (defined in
``base.py``) and implements ``execute``; families decide for themselves when
a wallet can be skipped and how a successful result is committed to the
account store or the progress ledger.

Submodules:
    base: ``OperationFamily`` abstract base, ``OperationContext`` and
        ``OperationResult``.
    checkin: ``CheckinOperation`` – daily check-in and energy collection.
    unlock: ``UnlockOperation`` – blind-box opening.
    stake: ``StakeOperation`` – account-level NFT staking.
"""

from .base import OperationContext, OperationFamily, OperationResult
from .checkin import CheckinOperation
from .stake import StakeOperation
from .unlock import UnlockOperation

__all__ = [
    "OperationContext",
    "OperationFamily",
    "OperationResult",
    "CheckinOperation",
    "StakeOperation",
    "UnlockOperation",
]
