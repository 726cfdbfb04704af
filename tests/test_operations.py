from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from conftest import FakeSession, http_error, ok, wallet_entry
from core.accounts import AccountRecord
from core.api_client import RemoteApiClient
from core.errors import ErrorType, RemoteError, SessionError, SigningError
from core.ledger import ProgressLedger, StakeResult, UnlockState
from operations.base import OperationContext
from operations.checkin import CheckinOperation
from operations.stake import StakeOperation
from operations.unlock import UnlockOperation

NOW = datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def account():
    return AccountRecord.model_validate(wallet_entry())


def _context(account, ledger, settings, routes, sleep=None):
    session = FakeSession(routes)
    ctx = OperationContext(
        account=account,
        ledger=ledger,
        settings=settings,
        client=RemoteApiClient(session),
        sleep=sleep or AsyncMock(),
        clock=lambda: NOW,
    )
    return ctx, session


class TestCheckinOperation:
    """Test suite for daily check-in and energy collection."""

    def test_skip_when_checked_in_today(self, settings, account, ledger):
        op = CheckinOperation(settings, clock=lambda: NOW)
        assert op.skip_reason(account, ledger) is None

        account.mark_checked_in(NOW)
        assert op.skip_reason(account, ledger) == "already checked in today"

    def test_yesterday_does_not_skip(self, settings, account, ledger):
        account.mark_checked_in(NOW - timedelta(days=1))
        op = CheckinOperation(settings, clock=lambda: NOW)
        assert op.skip_reason(account, ledger) is None

    async def test_check_in_and_collect(self, settings, account, ledger):
        ctx, session = _context(account, ledger, settings, {
            ("GET", "/check-in-status"): ok({"can_check_in": True}),
            ("POST", "/check-in"): ok({"success": True, "energy_reward": 100, "check_in_count": 2}),
            ("GET", "/nfts/stats"): ok({"success": True, "data": {"pending_energy": 250}}),
            ("POST", "/nfts/collect-energy"): ok({
                "success": True,
                "data": {"total_nfts": 2, "success_count": 2, "failed_count": 0, "total_energy": 250},
            }),
        })
        op = CheckinOperation(settings, clock=lambda: NOW)

        result = await op.execute(ctx)

        assert result.success is True
        assert result.details["collected_energy"] == 250.0
        assert result.succeeded == 2
        assert account.last_checkin_at == NOW
        signed_body = session.calls[-1][3]
        assert signed_body["message"].startswith("Collect energy at ")

    async def test_second_run_same_day_submits_once(self, settings, account, ledger):
        routes = {
            ("GET", "/check-in-status"): ok({"can_check_in": True}),
            ("POST", "/check-in"): ok({"success": True}),
            ("GET", "/nfts/stats"): ok({"data": {"pending_energy": 0}}),
        }
        ctx, session = _context(account, ledger, settings, routes)
        op = CheckinOperation(settings, clock=lambda: NOW)

        if op.skip_reason(account, ledger) is None:
            await op.execute(ctx)
        if op.skip_reason(account, ledger) is None:
            await op.execute(ctx)

        assert session.count("POST", "/check-in") == 1

    async def test_ineligible_marks_without_submitting(self, settings, account, ledger):
        ctx, session = _context(account, ledger, settings, {
            ("GET", "/check-in-status"): ok({"can_check_in": False}),
            ("GET", "/nfts/stats"): ok({"data": {"pending_energy": 0}}),
        })
        result = await CheckinOperation(settings).execute(ctx)

        assert result.status.startswith("already checked in on the service")
        assert session.count("POST", "/check-in") == 0
        assert account.last_checkin_at == NOW

    async def test_energy_at_threshold_not_collected(self, settings, account, ledger):
        settings.energy_collect_threshold = 100
        ctx, session = _context(account, ledger, settings, {
            ("GET", "/check-in-status"): ok({"can_check_in": False}),
            ("GET", "/nfts/stats"): ok({"data": {"pending_energy": 100}}),
        })
        result = await CheckinOperation(settings).execute(ctx)

        assert "collected_energy" not in result.details
        assert session.count("POST", "/nfts/collect-energy") == 0

    async def test_collection_disabled(self, settings, account, ledger):
        settings.collect_energy = False
        ctx, session = _context(account, ledger, settings, {
            ("GET", "/check-in-status"): ok({"can_check_in": False}),
        })
        await CheckinOperation(settings).execute(ctx)
        assert session.count("GET", "/nfts/stats") == 0

    async def test_collection_failure_keeps_check_in(self, settings, account, ledger):
        ctx, _ = _context(account, ledger, settings, {
            ("GET", "/check-in-status"): ok({"can_check_in": True}),
            ("POST", "/check-in"): ok({"success": True}),
            ("GET", "/nfts/stats"): ok({"data": {"pending_energy": 10}}),
            ("POST", "/nfts/collect-energy"): http_error(500, "busy"),
        })
        result = await CheckinOperation(settings).execute(ctx)

        assert result.success is True
        assert account.last_checkin_at == NOW

    async def test_check_in_rejected_raises(self, settings, account, ledger):
        ctx, _ = _context(account, ledger, settings, {
            ("GET", "/check-in-status"): ok({"can_check_in": True}),
            ("POST", "/check-in"): http_error(503),
        })
        with pytest.raises(RemoteError):
            await CheckinOperation(settings).execute(ctx)
        assert account.last_checkin_at is None


class TestUnlockOperation:
    """Test suite for blind box opening."""

    def test_skip_when_staked(self, settings, account, ledger):
        op = UnlockOperation(settings)
        assert op.skip_reason(account, ledger) is None
        ledger.append(account.address, "labubu-00000-1")
        assert op.skip_reason(account, ledger) is None
        ledger.mark_staked(account.address, StakeResult(total=1, succeeded=1))
        assert op.skip_reason(account, ledger) == "NFTs already staked"

    async def test_no_boxes(self, settings, account, ledger):
        ctx, session = _context(account, ledger, settings, {
            ("GET", "/blind-boxes"): ok({"data": []}),
        })
        result = await UnlockOperation(settings).execute(ctx)

        assert result.status == "no boxes"
        assert session.count("POST", "/blind-boxes/open") == 0
        assert ledger.items(account.address) == []

    async def test_one_failure_does_not_stop_the_rest(self, settings, account, ledger):
        sleep = AsyncMock()
        ctx, session = _context(account, ledger, settings, {
            ("GET", "/blind-boxes"): ok({"data": [{"id": "b1"}, {"id": "b2"}]}),
            ("POST", "/blind-boxes/open"): [
                http_error(500, "box locked"),
                ok({"success": True, "data": {"template_id": "labubu-00000-5"}}),
            ],
        }, sleep=sleep)
        result = await UnlockOperation(settings).execute(ctx)

        assert (result.succeeded, result.failed) == (1, 1)
        assert result.status == "opened 1, failed 1"
        items = ledger.items(account.address)
        assert [i.template_id for i in items] == ["labubu-00000-5"]
        assert items[0].unlocked_at == NOW
        assert session.count("POST", "/blind-boxes/open") == 2
        sleep.assert_awaited_once_with(settings.item_delay_seconds)

    async def test_box_message_names_box(self, settings, account, ledger):
        ctx, session = _context(account, ledger, settings, {
            ("GET", "/blind-boxes"): ok({"data": [{"id": 42}]}),
            ("POST", "/blind-boxes/open"): ok({"data": {"template_id": "labubu-00000-1"}}),
        })
        await UnlockOperation(settings).execute(ctx)

        body = session.calls[-1][3]
        assert body["box_id"] == "42"
        assert body["message"].startswith("Open blind box 42 at ")

    async def test_bad_secret_aborts_wallet(self, settings, ledger):
        account = AccountRecord.model_validate(wallet_entry(privateKey="not-base58-0OIl"))
        ctx, session = _context(account, ledger, settings, {
            ("GET", "/blind-boxes"): ok({"data": [{"id": "b1"}, {"id": "b2"}]}),
        })
        with pytest.raises(SigningError):
            await UnlockOperation(settings).execute(ctx)
        assert session.count("POST", "/blind-boxes/open") == 0


class TestStakeOperation:
    """Test suite for account-level staking."""

    def test_skip_reasons(self, settings, account, ledger):
        op = StakeOperation(settings)
        assert op.skip_reason(account, ledger) == "no NFTs to stake"
        ledger.append(account.address, "labubu-00000-1")
        assert op.skip_reason(account, ledger) is None
        ledger.mark_staked(account.address, StakeResult(total=1))
        assert op.skip_reason(account, ledger) == "NFTs already staked"

    async def test_stake_marks_all_items(self, settings, account, ledger):
        for template in ("labubu-00000-1", "labubu-00000-2", "labubu-00000-4"):
            ledger.append(account.address, template)
        ctx, session = _context(account, ledger, settings, {
            ("POST", "/nfts/stake"): ok({
                "success": True,
                "data": {"total_nfts": 3, "success_count": 3, "failed_count": 0},
            }),
        })
        op = StakeOperation(settings)

        result = await op.execute(ctx)
        assert all(i.unlock_state is UnlockState.STAKE_PENDING for i in ledger.items(account.address))

        op.on_success(ctx, result)
        items = ledger.items(account.address)
        assert all(i.unlock_state is UnlockState.STAKED for i in items)
        expected = StakeResult(total=3, succeeded=3, failed=0, timestamp=NOW)
        assert all(i.stake_result == expected for i in items)
        assert session.count("POST", "/nfts/stake") == 1
        assert session.calls[0][3]["message"].startswith("Stake NFTs at ")

    async def test_rejected_stake_leaves_items_unstaked(self, settings, account, ledger):
        ledger.append(account.address, "labubu-00000-1")
        ledger.save()
        ctx, _ = _context(account, ledger, settings, {("POST", "/nfts/stake"): http_error(500)})
        op = StakeOperation(settings)

        with pytest.raises(RemoteError) as excinfo:
            await op.execute(ctx)
        result = op.on_failure(ctx, excinfo.value)
        ledger.save()

        assert result.success is False
        assert result.error_type is ErrorType.REMOTE
        assert ledger.is_staked(account.address) is False
        assert op.skip_reason(account, ledger) is None
        persisted = ProgressLedger(settings.progress_file).load().to_json()[account.address]
        assert [entry["state"] for entry in persisted] == ["unlocked"]

    async def test_application_rejection_clears_pending(self, settings, account, ledger):
        ledger.append(account.address, "labubu-00000-1")
        ctx, _ = _context(account, ledger, settings, {
            ("POST", "/nfts/stake"): ok({"success": False, "error": "not eligible"}),
        })

        with pytest.raises(RemoteError):
            await StakeOperation(settings).execute(ctx)
        assert ledger.items(account.address)[0].unlock_state is UnlockState.UNLOCKED

    async def test_transport_failure_keeps_items_pending(self, settings, account, ledger):
        ledger.append(account.address, "labubu-00000-1")
        ctx, _ = _context(account, ledger, settings, {
            ("POST", "/nfts/stake"): SessionError("POST /api/nfts/stake failed: connection reset"),
        })

        with pytest.raises(SessionError):
            await StakeOperation(settings).execute(ctx)
        assert ledger.items(account.address)[0].unlock_state is UnlockState.STAKE_PENDING
        assert ledger.is_staked(account.address) is False

    async def test_signing_failure_leaves_ledger_untouched(self, settings, ledger):
        account = AccountRecord.model_validate(wallet_entry(privateKey="0OIl"))
        ledger.append(account.address, "labubu-00000-1")
        ctx, session = _context(account, ledger, settings, {})

        with pytest.raises(SigningError):
            await StakeOperation(settings).execute(ctx)
        assert ledger.items(account.address)[0].unlock_state is UnlockState.UNLOCKED
        assert session.calls == []
