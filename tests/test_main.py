import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import main
from core.ledger import ClaimAttempt, ClaimLedger
from core.roster import RegistrationRoster


@pytest.fixture
def env_paths(tmp_path, monkeypatch):
    """Route ledger and roster to temp files and keep logging out of the repo."""
    ledger_path = str(tmp_path / "ledger.db")
    roster_path = str(tmp_path / "registrations.json")
    monkeypatch.setenv("LEDGER_DB_PATH", ledger_path)
    monkeypatch.setenv("ROSTER_FILE", roster_path)
    monkeypatch.setenv("USER_IDS", "")
    with patch("main.setup_logging"):
        yield ledger_path, roster_path


class TestParser:

    def test_flags(self):
        args = main.build_parser().parse_args(["--once", "--sequential", "--visible"])
        assert args.once and args.sequential and args.visible
        assert args.single is None

    def test_register_takes_id_and_name(self):
        args = main.build_parser().parse_args(["--register", "123", "alice"])
        assert args.register == ["123", "alice"]


class TestMaintenanceCommands:

    @pytest.mark.asyncio
    async def test_register(self, env_paths):
        _, roster_path = env_paths
        with patch("main.BrowserManager") as browser_cls:
            assert await main.main(["--register", "123", "alice"]) == 0
        browser_cls.assert_not_called()
        assert RegistrationRoster(roster_path).get("123").username == "alice"

    @pytest.mark.asyncio
    async def test_cleanup_and_remove_failed(self, env_paths):
        ledger_path, _ = env_paths
        ledger = ClaimLedger(ledger_path)
        ledger.record(ClaimAttempt.failure("1", "u", "navigation timeout (daily_reward)"))
        ledger.record(ClaimAttempt.success("1", "u", ["Daily Reward"]))
        ledger.record(ClaimAttempt.failure("2", "v", "login input not found"))

        assert await main.main(["--cleanup-duplicates"]) == 0
        assert ledger.count_attempts() == 2

        assert await main.main(["--remove-failed"]) == 0
        assert ledger.count_attempts() == 1

    @pytest.mark.asyncio
    async def test_stats(self, env_paths, capsys):
        ledger_path, _ = env_paths
        ClaimLedger(ledger_path).record(ClaimAttempt.success("1", "u", ["Daily Reward"]))

        assert await main.main(["--stats", "--days", "7"]) == 0
        out = capsys.readouterr().out
        assert "last 7 day(s)" in out
        assert "success" in out


class TestClaimModes:

    @pytest.mark.asyncio
    async def test_once_runs_one_cycle(self, env_paths):
        summary = MagicMock(failed=0)
        scheduler = MagicMock()
        scheduler.run_claim_cycle = AsyncMock(return_value=summary)
        browser = MagicMock()
        browser.launch = AsyncMock()
        browser.close = AsyncMock()

        with patch("main.BrowserManager", return_value=browser), \
                patch("main.RunScheduler", return_value=scheduler):
            assert await main.main(["--once"]) == 0

        scheduler.run_claim_cycle.assert_awaited_once()
        browser.launch.assert_awaited_once()
        browser.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_single_reports_failure_exit_code(self, env_paths):
        attempt = ClaimAttempt.failure("123", "123", "login input not found")
        scheduler = MagicMock()
        scheduler.claim_for_account = AsyncMock(return_value=attempt)
        browser = MagicMock()
        browser.launch = AsyncMock()
        browser.close = AsyncMock()

        with patch("main.BrowserManager", return_value=browser), \
                patch("main.RunScheduler", return_value=scheduler):
            assert await main.main(["--single", "123"]) == 1

        scheduler.claim_for_account.assert_awaited_once_with("123")
        browser.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_single_with_bad_id(self, env_paths):
        scheduler = MagicMock()
        scheduler.claim_for_account = AsyncMock(side_effect=ValueError("invalid account id format"))
        browser = MagicMock()
        browser.launch = AsyncMock()
        browser.close = AsyncMock()

        with patch("main.BrowserManager", return_value=browser), \
                patch("main.RunScheduler", return_value=scheduler):
            assert await main.main(["--single", "abc"]) == 2
        browser.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_browser_launch_failure_exits_cleanly(self, env_paths, caplog):
        scheduler = MagicMock()
        scheduler.run_claim_cycle = AsyncMock()
        browser = MagicMock()
        browser.launch = AsyncMock(side_effect=RuntimeError("Browser.launch: no display"))
        browser.close = AsyncMock()

        with patch("main.BrowserManager", return_value=browser), \
                patch("main.RunScheduler", return_value=scheduler):
            assert await main.main(["--once"]) == 1

        assert "Browser launch failed" in caplog.text
        scheduler.run_claim_cycle.assert_not_awaited()
        browser.close.assert_awaited_once()
