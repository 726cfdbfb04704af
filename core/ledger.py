"""Durable record of unlocked and staked items, keyed by wallet address.

Each wallet owns an ordered list of items.  An item is one of three tagged
variants::

    unlocked -> stake_pending -> staked
    unlocked -----------------> staked
    unlocked <- stake_pending             (stake rejected by the service)

An item stays ``stake_pending`` only while the stake outcome is unknown: the
transport failed or the run was interrupted mid-call.  Items are never
removed.  The ledger is loaded once per run, mutated by the
unlock and stake operations, and rewritten wholesale at every checkpoint.

Older ``open.json`` files stored bare template ids and ``{"templateId",
"staked", "stakedAt", "stakeResult"}`` objects; :meth:`ProgressLedger.load`
converts both shapes.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from core.errors import ConfigError
from core.utils import safe_json_read, safe_json_write, short_address

logger = logging.getLogger(__name__)


class UnlockState(str, Enum):
    """Lifecycle of a ledger item."""

    UNLOCKED = "unlocked"
    STAKE_PENDING = "stake_pending"
    STAKED = "staked"


class StakeResult(BaseModel):
    """Outcome snapshot of one account-level stake call."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    timestamp: Optional[datetime] = None


class UnlockedItem(BaseModel):
    """Item obtained from a blind box and not yet submitted for staking."""

    state: Literal["unlocked"] = "unlocked"
    template_id: str
    unlocked_at: Optional[datetime] = None

    @property
    def unlock_state(self) -> UnlockState:
        return UnlockState(self.state)

    def to_pending(self, when: datetime) -> "StakePendingItem":
        return StakePendingItem(
            template_id=self.template_id,
            unlocked_at=self.unlocked_at,
            pending_since=when,
        )

    def to_staked(self, result: StakeResult, when: datetime) -> "StakedItem":
        return StakedItem(
            template_id=self.template_id,
            unlocked_at=self.unlocked_at,
            staked_at=when,
            stake_result=result,
        )


class StakePendingItem(BaseModel):
    """Item whose stake request was sent but not yet confirmed."""

    state: Literal["stake_pending"] = "stake_pending"
    template_id: str
    unlocked_at: Optional[datetime] = None
    pending_since: Optional[datetime] = None

    @property
    def unlock_state(self) -> UnlockState:
        return UnlockState(self.state)

    def to_unlocked(self) -> UnlockedItem:
        return UnlockedItem(template_id=self.template_id, unlocked_at=self.unlocked_at)

    def to_pending(self, when: datetime) -> "StakePendingItem":
        return self

    def to_staked(self, result: StakeResult, when: datetime) -> "StakedItem":
        return StakedItem(
            template_id=self.template_id,
            unlocked_at=self.unlocked_at,
            staked_at=when,
            stake_result=result,
        )


class StakedItem(BaseModel):
    """Item confirmed as staked.  Terminal."""

    state: Literal["staked"] = "staked"
    template_id: str
    unlocked_at: Optional[datetime] = None
    staked_at: Optional[datetime] = None
    stake_result: Optional[StakeResult] = None

    @property
    def unlock_state(self) -> UnlockState:
        return UnlockState(self.state)

    def to_pending(self, when: datetime) -> "StakedItem":
        return self

    def to_staked(self, result: StakeResult, when: datetime) -> "StakedItem":
        return self


LedgerItem = Annotated[
    Union[UnlockedItem, StakePendingItem, StakedItem],
    Field(discriminator="state"),
]
_ITEMS_ADAPTER: TypeAdapter = TypeAdapter(List[LedgerItem])


@dataclass
class LedgerStats:
    """Aggregate view used by the box and stake reports."""

    wallets: int = 0
    wallets_with_staked: int = 0
    total_items: int = 0
    staked_items: int = 0
    by_template: Counter = field(default_factory=Counter)


def _coerce_legacy_item(entry: Any) -> Any:
    """Translate one pre-tagged ``open.json`` entry to the tagged layout."""
    if isinstance(entry, str):
        return {"state": UnlockState.UNLOCKED.value, "template_id": entry}
    if not isinstance(entry, dict) or "state" in entry:
        return entry

    template_id = entry.get("templateId", entry.get("template_id"))
    if not entry.get("staked"):
        return {"state": UnlockState.UNLOCKED.value, "template_id": template_id}

    raw_result = entry.get("stakeResult") or {}
    return {
        "state": UnlockState.STAKED.value,
        "template_id": template_id,
        "staked_at": entry.get("stakedAt"),
        "stake_result": {
            "total": raw_result.get("total_nfts", 0),
            "succeeded": raw_result.get("success_count", 0),
            "failed": raw_result.get("failed_count", 0),
            "timestamp": raw_result.get("timestamp") or entry.get("stakedAt"),
        },
    }


class ProgressLedger:
    """Address-keyed item ledger with atomic checkpoints.

    Owned by the orchestrator and passed by reference to the operations;
    nothing else mutates it.
    """

    def __init__(self, path: str, max_backups: int = 3) -> None:
        self.path = path
        self.max_backups = max_backups
        self._entries: Dict[str, List[Any]] = {}

    def load(self) -> "ProgressLedger":
        """Read the ledger file.  A missing file yields an empty ledger.

        Raises:
            ConfigError: If the document is not an object or a wallet's
                entry cannot be parsed.  Unreadable entries are never
                dropped.
        """
        raw = safe_json_read(self.path, self.max_backups)
        if raw is None:
            self._entries = {}
            logger.info("No progress file at %s, starting empty", self.path)
            return self
        if not isinstance(raw, dict):
            raise ConfigError(f"Progress file {self.path} must contain a JSON object")

        entries: Dict[str, List[Any]] = {}
        for address, items in raw.items():
            if not isinstance(items, list):
                raise ConfigError(
                    f"Progress file {self.path}: entry for {short_address(address)} is not a list"
                )
            try:
                entries[address] = _ITEMS_ADAPTER.validate_python(
                    [_coerce_legacy_item(item) for item in items]
                )
            except ValidationError as exc:
                raise ConfigError(
                    f"Progress file {self.path}: unreadable entry for "
                    f"{short_address(address)} ({exc.error_count()} errors)"
                ) from None

        self._entries = entries
        logger.info(
            "Loaded ledger: %d wallets, %d items",
            len(entries), sum(len(v) for v in entries.values()),
        )
        return self

    def save(self) -> bool:
        return safe_json_write(self.path, self.to_json(), self.max_backups)

    def to_json(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            address: [item.model_dump(mode="json", exclude_none=True) for item in items]
            for address, items in self._entries.items()
        }

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def items(self, address: str) -> List[Any]:
        """Return a copy of the wallet's items (empty if unknown)."""
        return list(self._entries.get(address, ()))

    def has_items(self, address: str) -> bool:
        return bool(self._entries.get(address))

    def is_staked(self, address: str) -> bool:
        """True if any item of the wallet is staked.

        Staking applies to the whole wallet on the remote side, so one
        staked item means the wallet is done.
        """
        return any(
            item.unlock_state is UnlockState.STAKED
            for item in self._entries.get(address, ())
        )

    def stats(self) -> LedgerStats:
        stats = LedgerStats()
        for items in self._entries.values():
            stats.wallets += 1
            staked_here = 0
            for item in items:
                stats.total_items += 1
                stats.by_template[item.template_id] += 1
                if item.unlock_state is UnlockState.STAKED:
                    staked_here += 1
            stats.staked_items += staked_here
            if staked_here:
                stats.wallets_with_staked += 1
        return stats

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def append(
        self,
        address: str,
        template_id: str,
        when: Optional[datetime] = None,
    ) -> UnlockedItem:
        """Record a newly unlocked item at the end of the wallet's list."""
        item = UnlockedItem(
            template_id=template_id,
            unlocked_at=when or datetime.now(timezone.utc),
        )
        self._entries.setdefault(address, []).append(item)
        return item

    def mark_pending(self, address: str, when: Optional[datetime] = None) -> int:
        """Move every unlocked item of the wallet to ``stake_pending``."""
        when = when or datetime.now(timezone.utc)
        return self._transition(address, lambda item: item.to_pending(when))

    def clear_pending(self, address: str) -> int:
        """Return the wallet's ``stake_pending`` items to ``unlocked``."""
        return self._transition(
            address,
            lambda item: item.to_unlocked() if isinstance(item, StakePendingItem) else item,
        )

    def mark_staked(
        self,
        address: str,
        result: StakeResult,
        when: Optional[datetime] = None,
    ) -> int:
        """Mark every not-yet-staked item of the wallet as staked.

        All items receive the same *result*; already staked items keep
        their original snapshot.

        Returns:
            Number of items that changed state.
        """
        when = when or datetime.now(timezone.utc)
        return self._transition(address, lambda item: item.to_staked(result, when))

    def _transition(self, address: str, step) -> int:
        items = self._entries.get(address)
        if not items:
            return 0
        changed = 0
        for index, item in enumerate(items):
            new_item = step(item)
            if new_item is not item:
                items[index] = new_item
                changed += 1
        return changed
