"""Batch orchestrator for Bubuverse Farm.

Drives one :class:`~operations.base.OperationFamily` across the account list:

1. ask the family whether the wallet can be skipped,
2. resolve the wallet's identity (proxy + User-Agent),
3. open a scoped session on the family's target page,
4. execute the family and commit its result,
5. checkpoint the account store and the progress ledger,
6. pause before the next wallet.

Every per-wallet failure is recorded in the :class:`RunSummary` and the loop
moves on; only configuration problems detected before the loop (too few
proxies) abort a run.  Cancelling the run flushes both stores before the
cancellation propagates.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from core.accounts import AccountRecord, AccountStore
from core.api_client import RemoteApiClient
from core.config import FarmSettings
from core.errors import ErrorType
from core.identity import IdentityAllocator, IdentityAssignment
from core.ledger import ProgressLedger
from core.session import SessionProvider
from operations.base import OperationContext, OperationFamily, OperationResult

logger = logging.getLogger(__name__)


class AccountStatus(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    ERRORED = "errored"


@dataclass
class AccountOutcome:
    """Per-wallet line of the run summary."""

    address: str
    label: str
    status: AccountStatus
    reason: str = ""
    error_type: Optional[ErrorType] = None
    succeeded: int = 0
    failed: int = 0


@dataclass
class RunSummary:
    """Counts of processed, skipped and errored wallets for one run.

    Attributes:
        operation: Family name.
        processed: Wallets whose operation completed.
        skipped: Wallets the family declared done.
        errored: Wallets that failed (identity, session, remote, signing).
        items_succeeded: Item-level successes across all wallets.
        items_failed: Item-level failures across all wallets.
        outcomes: One :class:`AccountOutcome` per wallet, in list order.
    """

    operation: str
    processed: int = 0
    skipped: int = 0
    errored: int = 0
    items_succeeded: int = 0
    items_failed: int = 0
    outcomes: List[AccountOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.processed + self.skipped + self.errored

    def record(self, outcome: AccountOutcome) -> None:
        if outcome.status is AccountStatus.PROCESSED:
            self.processed += 1
        elif outcome.status is AccountStatus.SKIPPED:
            self.skipped += 1
        else:
            self.errored += 1
        self.items_succeeded += outcome.succeeded
        self.items_failed += outcome.failed
        self.outcomes.append(outcome)


@dataclass
class PacingPolicy:
    """Delays between wallets.

    Attributes:
        account_delay: Pause after a wallet that reached the session step.
        skip_delay: Pause after a skipped wallet.
        jitter: Upper bound of a uniform random extra delay.
    """

    account_delay: float = 3.0
    skip_delay: float = 1.0
    jitter: float = 0.0
    rng: random.Random = field(default_factory=random.Random, repr=False)

    @classmethod
    def from_settings(cls, settings: FarmSettings) -> "PacingPolicy":
        return cls(
            account_delay=settings.account_delay_seconds,
            skip_delay=settings.skip_delay_seconds,
            jitter=settings.pacing_jitter_seconds,
        )

    def _with_jitter(self, base: float) -> float:
        if self.jitter > 0:
            return base + self.rng.uniform(0, self.jitter)
        return base

    def delay_after(self, outcome: AccountOutcome) -> float:
        if outcome.status is AccountStatus.SKIPPED:
            return self._with_jitter(self.skip_delay)
        return self._with_jitter(self.account_delay)


class BatchOrchestrator:
    """Runs operation families over the account list.

    The orchestrator owns the account store and the progress ledger for the
    duration of a run; families mutate them only through the context handed
    to ``execute``.  With ``max_concurrent_accounts > 1`` wallets run in a
    bounded worker pool and every checkpoint is serialized by one lock.
    """

    def __init__(
        self,
        settings: FarmSettings,
        store: AccountStore,
        ledger: ProgressLedger,
        session_provider: SessionProvider,
        allocator: Optional[IdentityAllocator] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        pacing: Optional[PacingPolicy] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.ledger = ledger
        self.session_provider = session_provider
        self.allocator = allocator or IdentityAllocator()
        self.pacing = pacing or PacingPolicy.from_settings(settings)
        self._sleep = sleep
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def flush(self) -> bool:
        """Write both stores from memory.  Returns False if either failed."""
        accounts_ok = self.store.save()
        ledger_ok = self.ledger.save()
        if not (accounts_ok and ledger_ok):
            logger.error(
                "Checkpoint incomplete (accounts: %s, progress: %s)",
                "ok" if accounts_ok else "FAILED",
                "ok" if ledger_ok else "FAILED",
            )
        return accounts_ok and ledger_ok

    async def checkpoint(self) -> bool:
        async with self._lock:
            return self.flush()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(
        self,
        family: OperationFamily,
        accounts: Optional[Sequence[AccountRecord]] = None,
        identity_pool: Sequence[str] = (),
        user_agents: Sequence[str] = (),
    ) -> RunSummary:
        """Drive *family* over *accounts* (default: the whole store).

        Raises:
            InsufficientIdentities: Before any remote call when the pool
                is smaller than the account list.
            asyncio.CancelledError: After flushing both stores.
        """
        accounts = list(self.store.accounts if accounts is None else accounts)
        summary = RunSummary(operation=family.name)
        if not accounts:
            logger.warning("No accounts to process for %s", family.name)
            return summary

        assignment = self.allocator.allocate(accounts, identity_pool, user_agents)
        if self.allocator.apply(accounts, assignment):
            await self.checkpoint()

        concurrency = min(len(accounts), self.settings.effective_concurrency)
        logger.info(
            "Starting %s for %d accounts (concurrency: %d)",
            family.name, len(accounts), concurrency,
        )

        try:
            if concurrency == 1:
                await self._run_sequential(family, accounts, assignment, summary)
            else:
                await self._run_pooled(family, accounts, assignment, summary, concurrency)
        except asyncio.CancelledError:
            logger.warning("Run interrupted, saving state...")
            self.flush()
            raise

        logger.info(
            "%s complete: %d processed, %d skipped, %d errored",
            family.name, summary.processed, summary.skipped, summary.errored,
        )
        return summary

    async def _run_sequential(
        self,
        family: OperationFamily,
        accounts: List[AccountRecord],
        assignment: IdentityAssignment,
        summary: RunSummary,
    ) -> None:
        last = len(accounts) - 1
        for index, account in enumerate(accounts):
            outcome = await self.process_account(family, account, assignment, index, len(accounts))
            summary.record(outcome)
            if index < last:
                await self._sleep(self.pacing.delay_after(outcome))

    async def _run_pooled(
        self,
        family: OperationFamily,
        accounts: List[AccountRecord],
        assignment: IdentityAssignment,
        summary: RunSummary,
        concurrency: int,
    ) -> None:
        semaphore = asyncio.Semaphore(concurrency)
        last = len(accounts) - 1

        async def worker(index: int, account: AccountRecord) -> AccountOutcome:
            async with semaphore:
                outcome = await self.process_account(
                    family, account, assignment, index, len(accounts),
                )
                if index < last:
                    await self._sleep(self.pacing.delay_after(outcome))
                return outcome

        outcomes = await asyncio.gather(
            *(worker(index, account) for index, account in enumerate(accounts))
        )
        for outcome in outcomes:
            summary.record(outcome)

    async def process_account(
        self,
        family: OperationFamily,
        account: AccountRecord,
        assignment: IdentityAssignment,
        index: int,
        total: int,
    ) -> AccountOutcome:
        """Run steps 1-5 for one wallet.  Never raises for per-wallet errors."""
        logger.info("[%d/%d] %s", index + 1, total, account.label)

        reason = family.skip_reason(account, self.ledger)
        if reason:
            logger.info("[%s] Skip - %s", account.label, reason)
            return AccountOutcome(
                address=account.address,
                label=account.label,
                status=AccountStatus.SKIPPED,
                reason=reason,
            )

        ctx = OperationContext(
            account=account,
            ledger=self.ledger,
            settings=self.settings,
            sleep=self._sleep,
            clock=family.clock,
        )
        raw_identity, user_agent = assignment.for_index(index)
        try:
            identity = self.allocator.resolve(raw_identity, user_agent)
            logger.info("[%s] Proxy: %s", account.label, identity.proxy.masked())
            async with self.session_provider.session(identity, family.target_path) as session:
                ctx.client = RemoteApiClient(session)
                result = await family.execute(ctx)
                family.on_success(ctx, result)
        except Exception as exc:
            result = family.on_failure(ctx, exc)
        finally:
            await self.checkpoint()

        return self._outcome(account, result)

    @staticmethod
    def _outcome(account: AccountRecord, result: OperationResult) -> AccountOutcome:
        return AccountOutcome(
            address=account.address,
            label=account.label,
            status=AccountStatus.PROCESSED if result.success else AccountStatus.ERRORED,
            reason=result.status,
            error_type=result.error_type,
            succeeded=result.succeeded,
            failed=result.failed,
        )
