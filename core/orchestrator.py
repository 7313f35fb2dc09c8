"""Run scheduler and orchestration engine for Rewardbot.

This module drives claim runs across the registration roster:

* One claim run walks every *active* registration and runs a
  :class:`~rewards.session.ClaimSession` per account, either concurrently
  (bounded by the injected :class:`~core.limiter.ConcurrencyLimiter`) or
  serially with a fixed pause between accounts.
* One account's failure never stops the run; every account yields an
  :class:`AccountResult`, and a :class:`RunSummary` is always returned and
  handed to the notifier.
* A run requested while another is in progress is skipped.
* Before each run the shared browser is health-checked and restarted if
  it stopped responding.
* ``scheduler_loop`` repeats runs at the configured UTC hours and can
  remove superseded failures from the ledger afterwards.

Classes:
    AccountResult: Per-account line of a run summary.
    RunSummary: Aggregated outcome of one run (not persisted).
    RunScheduler: Main orchestration engine.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from core.config import ClaimerSettings, Registration
from core.ledger import ClaimAttempt, ClaimLedger
from core.limiter import ConcurrencyLimiter
from core.notifier import LogNotifier, SummaryNotifier
from core.roster import RegistrationRoster
from core.utils import is_valid_account_id
from rewards.session import ClaimSession, ErrorType

logger = logging.getLogger(__name__)

INVALID_ID_ERROR = "invalid account id format"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AccountResult:
    """Outcome of one account within a run.

    Attributes:
        account_id: Registration identifier.
        username: Display name at the time of the run.
        success: Whether the session ended in a ``success`` attempt.
        items: Items counted as claimed.
        error: Failure reason, if any.
        attempt_id: Ledger id of the recorded attempt (``None`` when no
            session ran, e.g. a malformed id or a crash before recording).
    """

    account_id: str
    username: str
    success: bool
    items: List[str] = field(default_factory=list)
    error: Optional[str] = None
    attempt_id: Optional[str] = None

    @classmethod
    def from_attempt(cls, attempt: ClaimAttempt, username: str) -> "AccountResult":
        return cls(
            account_id=attempt.account_id,
            username=username,
            success=attempt.succeeded,
            items=list(attempt.items_claimed),
            error=attempt.error,
            attempt_id=attempt.id,
        )

    @classmethod
    def failure(cls, registration: Registration, error: str) -> "AccountResult":
        return cls(
            account_id=registration.account_id,
            username=registration.username,
            success=False,
            error=error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "username": self.username,
            "success": self.success,
            "items": list(self.items),
            "error": self.error,
            "attempt_id": self.attempt_id,
        }


@dataclass
class RunSummary:
    """Aggregated outcome of a claim run."""

    run_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    results: List[AccountResult] = field(default_factory=list)
    skipped: bool = False

    @property
    def attempted(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.attempted - self.succeeded

    def to_dict(self) -> Dict[str, Any]:
        """Serialise the summary to a JSON-safe dictionary."""
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "skipped": self.skipped,
            "total_attempted": self.attempted,
            "total_succeeded": self.succeeded,
            "total_failed": self.failed,
            "per_account": [r.to_dict() for r in self.results],
        }


class RunScheduler:
    """Runs claim sessions for the roster and reports each run.

    Args:
        settings: Application settings (mode, delay, schedule).
        browser_manager: Shared browser handed to every session.
        ledger: Ledger sessions record into.
        roster: Source of active registrations.
        limiter: Concurrency limiter; built from
            ``settings.max_concurrent_sessions`` when omitted.
        notifier: Summary sink; defaults to :class:`LogNotifier`.
        session_factory: Callable building a session (keyword arguments
            as :class:`ClaimSession`).
    """

    def __init__(
        self,
        settings: ClaimerSettings,
        browser_manager: Any,
        ledger: ClaimLedger,
        roster: RegistrationRoster,
        limiter: Optional[ConcurrencyLimiter] = None,
        notifier: Optional[SummaryNotifier] = None,
        session_factory: Callable[..., ClaimSession] = ClaimSession,
    ):
        self.settings = settings
        self.browser_manager = browser_manager
        self.ledger = ledger
        self.roster = roster
        self.limiter = limiter or ConcurrencyLimiter(settings.max_concurrent_sessions)
        self.notifier = notifier or LogNotifier()
        self.session_factory = session_factory

        self._stop_event = asyncio.Event()
        self._running = False
        self.last_run: Optional[RunSummary] = None
        self.next_run: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Claim runs
    # ------------------------------------------------------------------

    async def run_claim_cycle(self, sequential: Optional[bool] = None) -> RunSummary:
        """Claim for every active registration and report the run.

        Args:
            sequential: Force serial (``True``) or concurrent (``False``)
                mode; ``None`` uses ``settings.sequential``.

        Returns:
            The run summary.  When a run is already in progress an empty
            summary flagged ``skipped`` is returned immediately.
        """
        if self._running:
            logger.warning("⏭️ Claim run already in progress - skipping this trigger")
            now = _utcnow()
            return RunSummary(
                run_id=uuid.uuid4().hex[:12], started_at=now, finished_at=now, skipped=True
            )

        self._running = True
        try:
            summary = RunSummary(run_id=uuid.uuid4().hex[:12], started_at=_utcnow())
            registrations = self.roster.list_active()
            serial = self.settings.sequential if sequential is None else sequential
            logger.info(
                f"🚀 Claim run {summary.run_id} starting for {len(registrations)} "
                f"account(s) ({'serial' if serial else 'concurrent'})"
            )
            if registrations:
                await self._ensure_browser()

            if serial:
                for index, registration in enumerate(registrations):
                    if index:
                        await self._pause(self.settings.inter_account_delay_seconds)
                    summary.results.append(
                        await self._run_account(registration, summary.run_id)
                    )
            else:
                outcomes = await asyncio.gather(
                    *(self._run_account(r, summary.run_id) for r in registrations),
                    return_exceptions=True,
                )
                for registration, outcome in zip(registrations, outcomes):
                    if isinstance(outcome, BaseException):
                        logger.error(
                            f"❌ Claim task for {registration.account_id} crashed: {outcome}"
                        )
                        outcome = AccountResult.failure(
                            registration, f"{type(outcome).__name__}: {outcome}"
                        )
                    summary.results.append(outcome)

            summary.finished_at = _utcnow()
            self.last_run = summary
            logger.info(
                f"🏁 Claim run {summary.run_id} finished: {summary.succeeded}/"
                f"{summary.attempted} succeeded, {summary.failed} failed"
            )
            await self._notify(summary)
            return summary
        finally:
            self._running = False

    async def claim_for_account(
        self, account_id: str, username: Optional[str] = None
    ) -> ClaimAttempt:
        """Run one claim session outside the schedule (manual trigger).

        Args:
            account_id: Account to claim for; it need not be registered.
            username: Display label; falls back to the roster entry, then
                to the account id.

        Returns:
            The recorded attempt.

        Raises:
            ValueError: If *account_id* is malformed.
        """
        if not is_valid_account_id(account_id):
            raise ValueError(f"{INVALID_ID_ERROR}: {account_id!r}")
        registration = self.roster.get(account_id)
        if username is None and registration is not None:
            username = registration.username
        session = self._build_session(account_id, username, run_id=None)
        attempt = await session.run()
        self._handle_rejection(attempt)
        return attempt

    async def _run_account(self, registration: Registration, run_id: str) -> AccountResult:
        if not is_valid_account_id(registration.account_id):
            logger.warning(f"❌ {registration.account_id}: {INVALID_ID_ERROR}")
            self._mark_invalid(registration.account_id, INVALID_ID_ERROR)
            return AccountResult.failure(registration, INVALID_ID_ERROR)

        try:
            session = self._build_session(
                registration.account_id, registration.username, run_id
            )
            attempt = await session.run()
        except Exception as exc:
            logger.exception(f"❌ Claim for {registration.account_id} raised")
            return AccountResult.failure(registration, f"{type(exc).__name__}: {exc}")
        self._handle_rejection(attempt)
        return AccountResult.from_attempt(attempt, registration.username)

    def _handle_rejection(self, attempt: ClaimAttempt) -> None:
        if attempt.metadata.get("error_type") == ErrorType.INVALID_ACCOUNT.value:
            self._mark_invalid(attempt.account_id, attempt.error)

    def _mark_invalid(self, account_id: str, reason: str) -> None:
        try:
            self.roster.mark_invalid(account_id, reason)
        except KeyError:
            pass  # manual claim for an unregistered account

    def _build_session(
        self, account_id: str, username: Optional[str], run_id: Optional[str]
    ) -> ClaimSession:
        return self.session_factory(
            account_id=account_id,
            browser=self.browser_manager,
            limiter=self.limiter,
            ledger=self.ledger,
            settings=self.settings,
            username=username,
            run_id=run_id,
        )

    async def _ensure_browser(self) -> bool:
        """Restart the shared browser if it stopped responding.

        Sessions still run when the restart fails; they record the
        browser failure and the next run tries again.
        """
        try:
            if await self.browser_manager.check_health():
                return True
            logger.warning("Browser appears unhealthy - restarting before claim run")
            await self.browser_manager.restart()
            return True
        except Exception as e:
            logger.error(f"❌ Browser restart failed: {e}")
            return False

    async def _pause(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)

    async def _notify(self, summary: RunSummary) -> None:
        try:
            await self.notifier.send_summary(summary)
            if summary.failed:
                await self.notifier.send_failure_alert(summary)
        except Exception as e:
            logger.error(f"Failed to deliver run summary: {e}")

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup_duplicates(self) -> int:
        """Remove failed ledger rows superseded by a same-day success."""
        try:
            return self.ledger.delete_superseded_failures()
        except Exception as e:
            logger.warning(f"Duplicate cleanup failed: {e}")
            return 0

    # ------------------------------------------------------------------
    # Daemon loop
    # ------------------------------------------------------------------

    def next_run_time(self, now: Optional[datetime] = None) -> datetime:
        """First scheduled UTC hour strictly after *now*."""
        now = (now or _utcnow()).astimezone(timezone.utc)
        base = now.replace(minute=0, second=0, microsecond=0)
        for day in range(2):
            for hour in self.settings.schedule_hours_utc:
                candidate = base.replace(hour=hour) + timedelta(days=day)
                if candidate > now:
                    return candidate
        return base + timedelta(days=1)

    async def scheduler_loop(self) -> None:
        """Run claim cycles at each scheduled hour until :meth:`stop`.

        After each cycle, superseded failures are removed when
        ``auto_cleanup_duplicates`` is enabled.
        """
        logger.info("Claim scheduler loop started.")
        while not self._stop_event.is_set():
            self.next_run = self.next_run_time()
            delay = (self.next_run - _utcnow()).total_seconds()
            logger.info(f"⏰ Next claim run at {self.next_run:%Y-%m-%d %H:%M} UTC")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=max(delay, 0))
                break  # Stop event set during sleep
            except asyncio.TimeoutError:
                pass

            await self.run_claim_cycle()
            if self.settings.auto_cleanup_duplicates:
                self.cleanup_duplicates()
        logger.info("Claim scheduler loop stopped.")

    def stop(self) -> None:
        """Signal the scheduler loop to exit."""
        self._stop_event.set()

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "last_run": self.last_run.to_dict() if self.last_run else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "active_accounts": self.roster.count_active(),
            "limiter": self.limiter.status(),
        }
