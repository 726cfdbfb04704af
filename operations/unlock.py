"""Blind-box opening.

Unopened boxes are listed live on every run, so a box opened earlier never
comes back and no local bookkeeping is needed to avoid reopening it.  Each
box is opened independently; one failure never stops the rest.
"""

import logging
from typing import Optional

from core.accounts import AccountRecord
from core.errors import FarmError, SigningError
from core.ledger import ProgressLedger
from operations.base import OperationContext, OperationFamily, OperationResult

logger = logging.getLogger(__name__)


class UnlockOperation(OperationFamily):
    """Open every unopened blind box and record the obtained templates."""

    name = "unlock"
    target_path = "/space"

    def skip_reason(self, account: AccountRecord, ledger: ProgressLedger) -> Optional[str]:
        if ledger.has_items(account.address) and ledger.is_staked(account.address):
            return "NFTs already staked"
        return None

    async def execute(self, ctx: OperationContext) -> OperationResult:
        address = ctx.account.address
        boxes = await ctx.client.get_unopened_boxes(address)
        if not boxes:
            logger.info("[%s] No boxes", ctx.label)
            return OperationResult(success=True, status="no boxes")

        logger.info("[%s] Found %d boxes", ctx.label, len(boxes))
        succeeded = failed = 0
        for index, box in enumerate(boxes):
            try:
                signed = ctx.signed(f"Open blind box {box.id}")
                opened = await ctx.client.open_box(
                    address, box.id, signed["signature"], signed["message"],
                )
            except SigningError:
                # Same secret for every box
                raise
            except FarmError as exc:
                failed += 1
                logger.warning(
                    "[%s] Box %d/%d failed: %s", ctx.label, index + 1, len(boxes), exc,
                )
            else:
                ctx.ledger.append(address, opened.template_id, when=ctx.clock())
                succeeded += 1
                logger.info(
                    "[%s] Box %d/%d -> %s", ctx.label, index + 1, len(boxes), opened.template_id,
                )

            if index < len(boxes) - 1:
                await ctx.sleep(self.settings.item_delay_seconds)

        return OperationResult(
            success=True,
            status=f"opened {succeeded}, failed {failed}",
            succeeded=succeeded,
            failed=failed,
        )
