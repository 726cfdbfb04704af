"""Typed client for the Bubuverse REST API.

Every endpoint lives under ``/api/users/{address}``.  The client is a thin
layer over an :class:`~core.session.ApiSession`: it builds paths, unpacks the
service's JSON envelopes into dataclasses and turns non-success answers into
:class:`~core.errors.RemoteError`.  It never retries; a failed call is
reported to the caller and the next run picks the work up again.

Signatures are produced by the caller (see ``core.signing``) so that this
module never touches wallet secrets.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.errors import RemoteError
from core.session import ApiResponse, ApiSession

logger = logging.getLogger(__name__)


@dataclass
class CheckinStatus:
    can_check_in: bool
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class CheckinReceipt:
    success: bool
    energy_reward: float = 0.0
    streak: int = 0


@dataclass
class EnergyStats:
    pending_energy: float = 0.0
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class BatchReceipt:
    """Result of an account-level batch call (energy collection or staking).

    Attributes:
        total: Number of NFTs the call covered.
        succeeded: NFTs processed successfully.
        failed: NFTs that failed.
        total_energy: Energy collected (collection only).
        error_messages: Per-NFT failure reasons reported by the service.
    """

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    total_energy: float = 0.0
    error_messages: List[str] = field(default_factory=list)


@dataclass
class Box:
    id: str
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class OpenedBox:
    box_id: str
    template_id: str


def _cache_buster() -> int:
    return int(time.time() * 1000)


def _payload(body: Any) -> Dict[str, Any]:
    """Return the ``data`` member of an envelope, or the body itself."""
    if isinstance(body, dict):
        inner = body.get("data")
        if isinstance(inner, dict):
            return inner
        return body
    return {}


def _error_text(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        for key in ("message", "error", "msg"):
            if body.get(key):
                return str(body[key])
    return fallback


def _batch_receipt(data: Dict[str, Any]) -> BatchReceipt:
    return BatchReceipt(
        total=int(data.get("total_nfts") or 0),
        succeeded=int(data.get("success_count") or 0),
        failed=int(data.get("failed_count") or 0),
        total_energy=float(data.get("total_energy") or 0.0),
        error_messages=[str(m) for m in data.get("error_messages") or []],
    )


class RemoteApiClient:
    """Bubuverse API calls for one session."""

    def __init__(self, session: ApiSession) -> None:
        self.session = session

    @staticmethod
    def _user_path(address: str, suffix: str) -> str:
        return f"/api/users/{address}/{suffix}"

    async def _call(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        response: ApiResponse = await self.session.request(
            method, path, params=params, json=json,
        )
        if not response.ok:
            raise RemoteError(
                operation,
                _error_text(response.data, response.reason or "request rejected"),
                status=response.status,
            )
        return response.data

    @staticmethod
    def _require_success(operation: str, body: Any) -> None:
        """Reject 2xx envelopes that carry ``"success": false``."""
        if isinstance(body, dict) and body.get("success") is False:
            raise RemoteError(operation, _error_text(body, "rejected by service"))

    # ------------------------------------------------------------------
    # Check-in / energy
    # ------------------------------------------------------------------

    async def get_checkin_status(self, address: str) -> CheckinStatus:
        body = await self._call(
            "check-in status", "GET",
            self._user_path(address, "check-in-status"),
            params={"_t": _cache_buster()},
        )
        data = _payload(body)
        return CheckinStatus(can_check_in=bool(data.get("can_check_in")), raw=data)

    async def check_in(self, address: str) -> CheckinReceipt:
        body = await self._call("check-in", "POST", self._user_path(address, "check-in"))
        self._require_success("check-in", body)
        data = _payload(body)
        return CheckinReceipt(
            success=True,
            energy_reward=float(data.get("energy_reward") or 0.0),
            streak=int(data.get("check_in_count") or 0),
        )

    async def get_energy_stats(self, address: str) -> EnergyStats:
        body = await self._call("energy stats", "GET", self._user_path(address, "nfts/stats"))
        self._require_success("energy stats", body)
        data = _payload(body)
        return EnergyStats(pending_energy=float(data.get("pending_energy") or 0.0), raw=data)

    async def collect_energy(self, address: str, signature: str, message: str) -> BatchReceipt:
        body = await self._call(
            "energy collection", "POST",
            self._user_path(address, "nfts/collect-energy"),
            json={"signature": signature, "message": message},
        )
        self._require_success("energy collection", body)
        return _batch_receipt(_payload(body))

    # ------------------------------------------------------------------
    # Blind boxes
    # ------------------------------------------------------------------

    async def get_unopened_boxes(self, address: str) -> List[Box]:
        body = await self._call(
            "box listing", "GET",
            self._user_path(address, "blind-boxes"),
            params={"status": "unopened", "_t": _cache_buster()},
        )
        entries = body.get("data") if isinstance(body, dict) else body
        boxes = []
        for entry in entries or []:
            if isinstance(entry, dict) and entry.get("id") is not None:
                boxes.append(Box(id=str(entry["id"]), raw=entry))
        return boxes

    async def open_box(
        self,
        address: str,
        box_id: str,
        signature: str,
        message: str,
    ) -> OpenedBox:
        body = await self._call(
            "box open", "POST",
            self._user_path(address, "blind-boxes/open"),
            json={"box_id": box_id, "signature": signature, "message": message},
        )
        self._require_success("box open", body)
        template_id = _payload(body).get("template_id")
        if not template_id and isinstance(body, dict):
            template_id = body.get("template_id")
        if not template_id:
            raise RemoteError("box open", "response carried no template_id")
        return OpenedBox(box_id=box_id, template_id=str(template_id))

    # ------------------------------------------------------------------
    # Staking
    # ------------------------------------------------------------------

    async def stake(self, address: str, signature: str, message: str) -> BatchReceipt:
        body = await self._call(
            "stake", "POST",
            self._user_path(address, "nfts/stake"),
            json={"signature": signature, "message": message},
        )
        self._require_success("stake", body)
        return _batch_receipt(_payload(body))
