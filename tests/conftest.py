import json
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Tuple

import base58
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from core.accounts import AccountStore
from core.config import FarmSettings
from core.errors import SessionError
from core.ledger import ProgressLedger
from core.session import ApiResponse, ApiSession, SessionProvider


def make_keypair() -> Tuple[str, str]:
    """Return (base58 address, base58 64-byte secret) for a fresh key."""
    key = Ed25519PrivateKey.generate()
    seed = key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public = key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return (
        base58.b58encode(public).decode("ascii"),
        base58.b58encode(seed + public).decode("ascii"),
    )


def wallet_entry(**extra: Any) -> Dict[str, Any]:
    address, secret = make_keypair()
    entry = {"publicKey": address, "privateKey": secret}
    entry.update(extra)
    return entry


def ok(data: Any) -> ApiResponse:
    return ApiResponse(status=200, ok=True, data=data, reason="OK")


def http_error(status: int, message: str = "") -> ApiResponse:
    return ApiResponse(status=status, ok=False, data={"error": message} if message else None, reason="Error")


class FakeSession(ApiSession):
    """Scripted API session.

    ``routes`` maps ``(method, path_suffix)`` to an :class:`ApiResponse`, an
    exception, or a list of those consumed in order.  The first matching
    route wins, so put wallet-specific suffixes before generic ones.
    """

    def __init__(self, routes: Optional[Dict[Tuple[str, str], Any]] = None) -> None:
        super().__init__("https://bubuverse.fun")
        self.routes = routes if routes is not None else {}
        self.calls: List[Tuple[str, str, Any, Any]] = []

    async def request(self, method, path, *, params=None, json=None):
        self.calls.append((method, path, params, json))
        for (route_method, suffix), reply in self.routes.items():
            if route_method != method or not path.endswith(suffix):
                continue
            if isinstance(reply, list):
                reply = reply.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        return http_error(404, "not found")

    def count(self, method: str, suffix: str) -> int:
        return sum(1 for m, p, _, _ in self.calls if m == method and p.endswith(suffix))


class FakeSessionProvider(SessionProvider):
    """Hands out one shared :class:`FakeSession` and records usage."""

    def __init__(self, settings: FarmSettings, session: Optional[FakeSession] = None, fail_hosts=()) -> None:
        super().__init__(settings)
        self.fake = session or FakeSession()
        self.fail_hosts = set(fail_hosts)
        self.opened: List[Any] = []
        self.released = 0
        self.active = 0
        self.max_active = 0
        self.closed = False

    @asynccontextmanager
    async def session(self, identity, target_path):
        self.opened.append((identity, target_path))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if identity.proxy.host in self.fail_hosts:
                raise SessionError(f"Redirect: {identity.proxy.host}")
            yield self.fake
        finally:
            self.active -= 1
            self.released += 1

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def settings(tmp_path):
    return FarmSettings(
        accounts_file=str(tmp_path / "wallet_sol.json"),
        progress_file=str(tmp_path / "open.json"),
        proxies_file=str(tmp_path / "proxy.txt"),
        user_agents_file=str(tmp_path / "ua.txt"),
        session_backend="http",
        account_delay_seconds=0,
        skip_delay_seconds=0,
        item_delay_seconds=0,
        session_settle_seconds=0,
    )


@pytest.fixture
def write_wallets(settings):
    def _write(entries: List[Dict[str, Any]]) -> AccountStore:
        with open(settings.accounts_file, "w", encoding="utf-8") as fh:
            json.dump(entries, fh)
        store = AccountStore(settings.accounts_file)
        store.load()
        return store
    return _write


@pytest.fixture
def ledger(settings):
    return ProgressLedger(settings.progress_file).load()


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def provider(settings, fake_session):
    return FakeSessionProvider(settings, fake_session)
