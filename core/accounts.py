"""Durable per-account state for Bubuverse Farm.

The account file (``config/wallet_sol.json``) is a JSON array produced by the
wallet provisioning workflow.  This module only *mutates* those records
(check-in timestamps, identity assignment, device id) and rewrites the whole
array after every account so an interrupted batch never loses progress.

Field names on disk keep the provisioning tool's camelCase layout; unknown
fields such as ``mnemonic`` are carried through untouched.

Classes:
    AccountRecord: One wallet.
    AccountStore: Load / checkpoint / reset the collection.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_serializer,
)

from core.errors import ConfigError
from core.utils import safe_json_read, safe_json_write, short_address

logger = logging.getLogger(__name__)

# Session artefacts from older runs that must not be reused
STALE_SESSION_FIELDS = (
    "createdAt",
    "cookieCreatedAt",
    "cookieExpiresAt",
    "vcrcsCookie",
    "allCookies",
)


class AccountRecord(BaseModel):
    """A single managed wallet.

    Attributes:
        address: Base58 public key; unique across the store.
        secret: Base58 keypair used for signing.  Never logged.
        assigned_identity: Raw proxy line bound to this wallet.
        user_agent: User-Agent bound to this wallet.
        last_checkin_at: Time of the last confirmed daily check-in.
        device_id: 32-char hex device identifier.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    address: str = Field(alias="publicKey", min_length=1)
    secret: SecretStr = Field(alias="privateKey")
    assigned_identity: Optional[str] = Field(default=None, alias="proxy")
    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    last_checkin_at: Optional[datetime] = Field(
        default=None, alias="lastCheckinDate",
    )
    device_id: Optional[str] = Field(default=None, alias="deviceId")

    @field_serializer("secret")
    def _dump_secret(self, value: SecretStr) -> str:
        return value.get_secret_value()

    @property
    def label(self) -> str:
        """Truncated address for log lines."""
        return short_address(self.address)

    def checked_in_on(self, day: date) -> bool:
        """Return True if the last check-in fell on *day* (local time)."""
        if self.last_checkin_at is None:
            return False
        # Naive timestamps are interpreted as local time
        return self.last_checkin_at.astimezone().date() == day

    def mark_checked_in(self, when: Optional[datetime] = None) -> None:
        """Record a confirmed check-in at *when* (default: now)."""
        self.last_checkin_at = when or datetime.now(timezone.utc)

    def clear_identity(self) -> None:
        """Forget the bound proxy and user agent."""
        self.assigned_identity = None
        self.user_agent = None

    def to_json(self) -> Dict[str, Any]:
        """Serialise in the on-disk camelCase layout."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AccountStore:
    """Ordered, address-unique collection of :class:`AccountRecord`.

    The file is loaded once and rewritten wholesale on every
    :meth:`save`; the list order is the order of identity assignment
    and must not be shuffled.
    """

    def __init__(self, path: str, max_backups: int = 3) -> None:
        self.path = path
        self.max_backups = max_backups
        self.accounts: List[AccountRecord] = []

    def __len__(self) -> int:
        return len(self.accounts)

    def __iter__(self) -> Iterator[AccountRecord]:
        return iter(self.accounts)

    def load(self) -> List[AccountRecord]:
        """Read the account file.

        Raises:
            ConfigError: If the file is missing, is not a JSON array,
                holds an invalid record, or repeats an address.
        """
        raw = safe_json_read(self.path, self.max_backups)
        if raw is None:
            raise ConfigError(f"Accounts file {self.path} does not exist or is unreadable")
        if not isinstance(raw, list):
            raise ConfigError(f"Accounts file {self.path} must contain a JSON array")

        accounts: List[AccountRecord] = []
        by_address: Dict[str, AccountRecord] = {}
        for index, entry in enumerate(raw):
            try:
                record = AccountRecord.model_validate(entry)
            except ValidationError as exc:
                # Field names only: the input may hold a private key
                fields = sorted({
                    ".".join(str(p) for p in err["loc"])
                    for err in exc.errors(include_input=False)
                })
                raise ConfigError(
                    f"Invalid account record #{index + 1}: {', '.join(fields)}"
                ) from None
            if record.address in by_address:
                raise ConfigError(
                    f"Duplicate account address {record.label} "
                    f"(record #{index + 1})"
                )
            by_address[record.address] = record
            accounts.append(record)

        self.accounts = accounts
        logger.info("Loaded %d accounts from %s", len(accounts), self.path)
        return accounts

    def save(self) -> bool:
        """Rewrite the whole account file.  Returns False on I/O failure."""
        data = [account.to_json() for account in self.accounts]
        ok = safe_json_write(self.path, data, self.max_backups)
        if ok:
            logger.debug("Checkpointed %d accounts to %s", len(data), self.path)
        return ok

    def preprocess(self) -> int:
        """Drop stale session fields and assign missing device ids.

        Returns:
            Number of records that changed.
        """
        changed = 0
        for account in self.accounts:
            touched = False
            extra = account.model_extra
            if extra:
                for key in STALE_SESSION_FIELDS:
                    if key in extra:
                        del extra[key]
                        touched = True
            if not account.device_id:
                account.device_id = uuid.uuid4().hex
                touched = True
            if touched:
                changed += 1
        if changed:
            logger.info("Preprocessed %d account records", changed)
        return changed

    def reset_identities(self, addresses: Optional[List[str]] = None) -> int:
        """Clear proxy/user-agent bindings.

        Args:
            addresses: Limit the reset to these wallets (all if ``None``).

        Returns:
            Number of records reset.
        """
        wanted = set(addresses) if addresses is not None else None
        count = 0
        for account in self.accounts:
            if wanted is not None and account.address not in wanted:
                continue
            if account.assigned_identity or account.user_agent:
                account.clear_identity()
                count += 1
        logger.info("Reset identity binding for %d accounts", count)
        return count
