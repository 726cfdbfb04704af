"""Message signing for wallet-authenticated API calls.

The remote service authenticates state-changing calls with a detached
ed25519 signature over a human-readable message such as
``"Stake NFTs at 1719830400000"``.  Wallet secrets are Solana-style base58
strings holding either the 64-byte keypair (seed followed by public key) or
the bare 32-byte seed.
"""

import base64
import time
from typing import Optional, Union

import base58
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from pydantic import SecretStr

from core.errors import SigningError

SEED_LENGTH = 32
KEYPAIR_LENGTH = 64


def _load_private_key(secret: Union[str, SecretStr]) -> Ed25519PrivateKey:
    value = secret.get_secret_value() if isinstance(secret, SecretStr) else secret
    try:
        raw = base58.b58decode(value.strip())
    except ValueError:
        raise SigningError("Secret is not valid base58") from None

    if len(raw) not in (SEED_LENGTH, KEYPAIR_LENGTH):
        raise SigningError(f"Secret has invalid length {len(raw)}")

    key = Ed25519PrivateKey.from_private_bytes(raw[:SEED_LENGTH])
    if len(raw) == KEYPAIR_LENGTH and raw[SEED_LENGTH:] != _public_bytes(key):
        raise SigningError("Secret seed does not match its public key")
    return key


def _public_bytes(key: Ed25519PrivateKey) -> bytes:
    return key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def public_address(key: Ed25519PrivateKey) -> str:
    """Return the base58 wallet address of *key*."""
    return base58.b58encode(_public_bytes(key)).decode("ascii")


def sign_message(
    message: str,
    secret: Union[str, SecretStr],
    address: Optional[str] = None,
) -> str:
    """Sign *message* and return the base64 signature.

    ed25519 is deterministic: the same message and key always give the
    same signature.

    Args:
        message: Text to sign.
        secret: Wallet secret.
        address: When given, the secret must belong to this wallet.

    Raises:
        SigningError: If the secret is malformed or belongs to another
            wallet.
    """
    key = _load_private_key(secret)
    if address is not None and public_address(key) != address:
        raise SigningError("Secret does not belong to this wallet")
    signature = key.sign(message.encode("utf-8"))
    return base64.b64encode(signature).decode("ascii")


def timestamp_ms() -> int:
    """Current Unix time in milliseconds, as embedded in signed messages."""
    return int(time.time() * 1000)
