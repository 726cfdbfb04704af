"""Operation family interface and result types for Bubuverse Farm.

An *operation family* is one of the per-wallet state machines (check-in,
unlock, stake).  The orchestrator drives every family the same way::

    skip_reason() -> open session on target_path -> execute()
        -> on_success() | on_failure() -> checkpoint

Families never open sessions or write files themselves; they receive an
:class:`OperationContext` carrying the wallet, the shared ledger and a
:class:`~core.api_client.RemoteApiClient` bound to the wallet's session.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from core.accounts import AccountRecord
from core.api_client import RemoteApiClient
from core.config import FarmSettings
from core.errors import ErrorType, classify_error
from core.ledger import ProgressLedger
from core.signing import sign_message, timestamp_ms

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Sleeper = Callable[[float], Awaitable[Any]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class OperationResult:
    """Outcome of one family execution for one wallet.

    Attributes:
        success: Whether the wallet-level operation completed.
        status: Human-readable description for logs and the summary.
        succeeded: Item-level successes (boxes opened, NFTs staked, ...).
        failed: Item-level failures.
        details: Family-specific payload consumed by ``on_success``.
        error_type: Set when the operation failed.
    """

    success: bool
    status: str
    succeeded: int = 0
    failed: int = 0
    details: Dict[str, Any] = field(default_factory=dict)
    error_type: Optional[ErrorType] = None


@dataclass
class OperationContext:
    """Everything a family needs to process one wallet."""

    account: AccountRecord
    ledger: ProgressLedger
    settings: FarmSettings
    # Bound once the wallet's session is open
    client: Optional[RemoteApiClient] = None
    sleep: Sleeper = asyncio.sleep
    clock: Clock = utc_now

    @property
    def label(self) -> str:
        return self.account.label

    def signed(self, message_prefix: str) -> Dict[str, str]:
        """Sign ``"<prefix> at <ms>"`` with the wallet secret.

        Returns:
            ``{"message": ..., "signature": ...}``.

        Raises:
            SigningError: If the wallet secret is malformed.
        """
        message = f"{message_prefix} at {timestamp_ms()}"
        return {
            "message": message,
            "signature": sign_message(message, self.account.secret, self.account.address),
        }


class OperationFamily(ABC):
    """Abstract base class for per-wallet operation families.

    Subclasses **must** define ``name`` and ``target_path`` and implement
    :meth:`execute`.  They may override :meth:`skip_reason` and the
    success/failure hooks.

    Attributes:
        name: Registry name used in logs and the run summary.
        target_path: Page the session warms up on before API calls.
    """

    name: str = "operation"
    target_path: str = "/"

    def __init__(self, settings: FarmSettings, clock: Optional[Clock] = None) -> None:
        self.settings = settings
        self.clock: Clock = clock or utc_now

    def today(self) -> date:
        """Current calendar day in local time."""
        return self.clock().astimezone().date()

    def skip_reason(self, account: AccountRecord, ledger: ProgressLedger) -> Optional[str]:
        """Return why *account* needs no work this run, or ``None``."""
        return None

    @abstractmethod
    async def execute(self, ctx: OperationContext) -> OperationResult:
        """Run the family's remote calls for one wallet.

        Raises:
            FarmError: Any per-wallet failure; the orchestrator records it
                and moves on.
        """

    def on_success(self, ctx: OperationContext, result: OperationResult) -> None:
        """Commit the outcome of a successful :meth:`execute`."""
        logger.info("[%s] %s: %s", ctx.label, self.name, result.status)

    def on_failure(self, ctx: OperationContext, error: BaseException) -> OperationResult:
        """Convert a per-wallet failure into a result.  Never mutates state."""
        error_type = classify_error(error)
        logger.error("[%s] %s failed (%s): %s", ctx.label, self.name, error_type.value, error)
        return OperationResult(success=False, status=str(error), error_type=error_type)
