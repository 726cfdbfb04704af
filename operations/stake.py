"""Account-level staking of unlocked NFTs.

The service stakes all of a wallet's NFTs in one call, so the ledger is
updated all-or-nothing: every item of the wallet becomes ``staked`` with the
same :class:`~core.ledger.StakeResult`, or nothing changes.
"""

import logging
from typing import Optional

from core.accounts import AccountRecord
from core.errors import RemoteError
from core.ledger import ProgressLedger, StakeResult
from operations.base import OperationContext, OperationFamily, OperationResult

logger = logging.getLogger(__name__)


class StakeOperation(OperationFamily):
    """Stake the wallet's NFTs once."""

    name = "stake"
    target_path = "/space"

    def skip_reason(self, account: AccountRecord, ledger: ProgressLedger) -> Optional[str]:
        if not ledger.has_items(account.address):
            return "no NFTs to stake"
        if ledger.is_staked(account.address):
            return "NFTs already staked"
        return None

    async def execute(self, ctx: OperationContext) -> OperationResult:
        address = ctx.account.address
        signed = ctx.signed("Stake NFTs")

        # Visible in the progress file if the process dies mid-call
        ctx.ledger.mark_pending(address, when=ctx.clock())
        try:
            receipt = await ctx.client.stake(address, signed["signature"], signed["message"])
        except RemoteError:
            # The service answered; the outcome is known and nothing was staked
            ctx.ledger.clear_pending(address)
            raise

        for message in receipt.error_messages:
            logger.warning("[%s] Stake error: %s", ctx.label, message)

        return OperationResult(
            success=True,
            status=f"staked {receipt.succeeded}/{receipt.total} NFTs",
            succeeded=receipt.succeeded,
            failed=receipt.failed,
            details={
                "stake_result": StakeResult(
                    total=receipt.total,
                    succeeded=receipt.succeeded,
                    failed=receipt.failed,
                    timestamp=ctx.clock(),
                ),
            },
        )

    def on_success(self, ctx: OperationContext, result: OperationResult) -> None:
        stake_result: StakeResult = result.details["stake_result"]
        changed = ctx.ledger.mark_staked(
            ctx.account.address, stake_result, when=stake_result.timestamp,
        )
        if result.failed:
            logger.warning("[%s] %d NFTs failed to stake", ctx.label, result.failed)
        logger.info("[%s] %s (%d ledger items marked)", ctx.label, result.status, changed)
