"""Daily check-in followed by energy collection.

States per wallet: *not checked in today* / *already checked in today*,
derived from the local calendar day of ``last_checkin_at``.  The remote
eligibility flag wins over the local timestamp, so a wallet the service
reports as ineligible is marked checked in without a submission.
"""

import logging
from typing import Optional

from core.accounts import AccountRecord
from core.api_client import BatchReceipt
from core.errors import FarmError
from core.ledger import ProgressLedger
from operations.base import OperationContext, OperationFamily, OperationResult

logger = logging.getLogger(__name__)


class CheckinOperation(OperationFamily):
    """Check in once per calendar day, then collect pending energy."""

    name = "checkin"
    target_path = "/tasks"

    def skip_reason(self, account: AccountRecord, ledger: ProgressLedger) -> Optional[str]:
        if account.checked_in_on(self.today()):
            return "already checked in today"
        return None

    async def execute(self, ctx: OperationContext) -> OperationResult:
        address = ctx.account.address
        status = await ctx.client.get_checkin_status(address)

        if status.can_check_in:
            receipt = await ctx.client.check_in(address)
            ctx.account.mark_checked_in(ctx.clock())
            text = f"checked in (+{receipt.energy_reward:g} energy, day {receipt.streak})"
        else:
            ctx.account.mark_checked_in(ctx.clock())
            text = "already checked in on the service"
        logger.info("[%s] %s", ctx.label, text)

        collected = await self._collect_energy(ctx)
        result = OperationResult(success=True, status=text)
        if collected is not None:
            result.succeeded = collected.succeeded
            result.failed = collected.failed
            result.details["collected_energy"] = collected.total_energy
            result.status += f", collected {collected.total_energy:.2f} energy"
        return result

    async def _collect_energy(self, ctx: OperationContext) -> Optional[BatchReceipt]:
        """Collect pending energy above the threshold.

        Failures are logged and swallowed: the check-in already stands.
        """
        if not self.settings.collect_energy:
            return None

        address = ctx.account.address
        try:
            stats = await ctx.client.get_energy_stats(address)
            if stats.pending_energy <= self.settings.energy_collect_threshold:
                logger.info(
                    "[%s] Not enough energy to collect (%.2f)",
                    ctx.label, stats.pending_energy,
                )
                return None

            logger.info("[%s] %.2f energy to collect", ctx.label, stats.pending_energy)
            signed = ctx.signed("Collect energy")
            receipt = await ctx.client.collect_energy(
                address, signed["signature"], signed["message"],
            )
        except FarmError as exc:
            logger.warning("[%s] Energy collection failed: %s", ctx.label, exc)
            return None

        logger.info(
            "[%s] Collected %.2f energy from %d/%d NFTs",
            ctx.label, receipt.total_energy, receipt.succeeded, receipt.total,
        )
        if receipt.failed:
            logger.warning("[%s] %d NFTs failed to collect", ctx.label, receipt.failed)
        return receipt
