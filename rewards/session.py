"""Claim session: one account, every reward section, one ledger entry.

A session walks a fixed state machine::

    INIT -> NAVIGATING(A) -> LOGGING_IN -> CLAIMING(A)
         -> NAVIGATING(B) -> CLAIMING(B) -> ... -> FINALIZING
         -> SUCCEEDED | FAILED

It holds a limiter slot and an isolated browser context for its whole
lifetime and gives both back in a ``finally`` block.  Whatever happens in
between, FINALIZING writes exactly one :class:`~core.ledger.ClaimAttempt`.

Per-button problems are logged and skipped; a section whose buttons cannot
be enumerated is skipped; navigation timeouts and missing login controls
fail the session.  A login the website rejects fails it as an invalid
account.
"""

import logging
import os
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from playwright.async_api import Error as PlaywrightError

from browser.automation import (
    ElementNotFound,
    InvalidAccount,
    NavigationTimeout,
    PageAutomation,
)
from core.config import ClaimerSettings, RewardSection
from core.ledger import ClaimAttempt, ClaimLedger
from core.limiter import ConcurrencyLimiter
from core.logging_setup import lifecycle_message
from rewards.classifier import (
    extract_item_label,
    has_invalid_account_indicator,
    is_countable,
    should_click,
    should_count_post_click,
    should_count_pre_click,
)

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    INIT = "init"
    NAVIGATING = "navigating"
    LOGGING_IN = "logging_in"
    CLAIMING = "claiming"
    FINALIZING = "finalizing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ErrorType(Enum):
    """Classification of session-fatal errors, stored with the attempt.

    - NAVIGATION_TIMEOUT: a section page never reached network idle.
    - ELEMENT_NOT_FOUND: a login control the flow depends on was missing.
    - INVALID_ACCOUNT: the website rejected the account id at login.
    - BROWSER_FAILURE: Playwright/Camoufox raised (context, page, crash).
    - UNKNOWN: anything else.
    """
    NAVIGATION_TIMEOUT = "navigation_timeout"
    ELEMENT_NOT_FOUND = "element_not_found"
    INVALID_ACCOUNT = "invalid_account"
    BROWSER_FAILURE = "browser_failure"
    UNKNOWN = "unknown"


class ClaimSession:
    """Drive one account through login and every configured reward section.

    The same session type serves scheduled runs and manual single-account
    claims.

    Args:
        account_id: Identifier typed into the website's login box.
        browser: Object providing ``create_context``, ``new_page`` and
            ``safe_close_context`` (normally a ``BrowserManager``).
        limiter: Shared :class:`ConcurrencyLimiter`.
        ledger: Ledger receiving the single outcome record.
        settings: Timings, selectors, sections and screenshot location.
        username: Website-visible label stored with the attempt; defaults
            to *account_id*.
        run_id: Scheduler run this session belongs to, if any.
        automation_factory: Builds the page adapter from a page.
    """

    def __init__(
        self,
        account_id: str,
        browser: Any,
        limiter: ConcurrencyLimiter,
        ledger: ClaimLedger,
        settings: ClaimerSettings,
        username: Optional[str] = None,
        run_id: Optional[str] = None,
        automation_factory: Callable[[Any], PageAutomation] = PageAutomation,
    ):
        self.account_id = account_id
        self.username = username or account_id
        self.browser = browser
        self.limiter = limiter
        self.ledger = ledger
        self.settings = settings
        self.run_id = run_id
        self.automation_factory = automation_factory

        self.history: List[Tuple[SessionState, Optional[str]]] = []
        self.section_tallies: Dict[str, Dict[str, Any]] = {}
        self.already_logged_in = False
        self.persisted = False

    @property
    def state(self) -> Optional[SessionState]:
        return self.history[-1][0] if self.history else None

    def _transition(self, state: SessionState, section: Optional[str] = None) -> None:
        self.history.append((state, section))
        logger.info(
            lifecycle_message(
                "session_state",
                account=self.account_id,
                state=state.value,
                section=section,
                run=self.run_id,
            )
        )

    async def run(self) -> ClaimAttempt:
        """Execute the session and return the recorded attempt.

        Never raises for automation problems; the outcome is always a
        ``ClaimAttempt``.  Only cancellation propagates.
        """
        started = time.monotonic()
        self._transition(SessionState.INIT)
        context = None
        acquired = False
        try:
            await self.limiter.acquire()
            acquired = True

            automation: Optional[PageAutomation] = None
            items: List[str] = []
            error: Optional[str] = None
            error_type: Optional[ErrorType] = None
            section_name: Optional[str] = None
            try:
                context = await self.browser.create_context()
                page = await self.browser.new_page(context)
                automation = self.automation_factory(page)

                for index, section in enumerate(self.settings.reward_sections):
                    section_name = section.name
                    self._transition(SessionState.NAVIGATING, section.name)
                    await self._navigate(automation, section)
                    if index == 0:
                        self._transition(SessionState.LOGGING_IN)
                        await self._login(automation)
                    self._transition(SessionState.CLAIMING, section.name)
                    items.extend(await self._claim_section(automation, section))
            except NavigationTimeout as exc:
                error = f"navigation timeout ({section_name})"
                error_type = ErrorType.NAVIGATION_TIMEOUT
                logger.warning(f"⏱️ {self.account_id}: {exc}")
            except ElementNotFound as exc:
                error = str(exc)
                error_type = ErrorType.ELEMENT_NOT_FOUND
                logger.warning(f"❌ {self.account_id}: {error}")
            except InvalidAccount as exc:
                error = str(exc)
                error_type = ErrorType.INVALID_ACCOUNT
                logger.warning(f"🚫 {self.account_id}: {error}")
            except PlaywrightError as exc:
                error = f"browser failure: {exc}"
                error_type = ErrorType.BROWSER_FAILURE
                logger.error(f"❌ {self.account_id}: {error}")
            except Exception as exc:
                error = f"{type(exc).__name__}: {exc}"
                error_type = ErrorType.UNKNOWN
                logger.exception(f"❌ Unexpected session error for {self.account_id}")

            self._transition(SessionState.FINALIZING)
            if automation is not None:
                await self._checkpoint(automation, "final-page")

            attempt = self._build_attempt(items, error, error_type, started)
            self._persist(attempt)
            self._transition(
                SessionState.SUCCEEDED if attempt.succeeded else SessionState.FAILED
            )
            return attempt
        finally:
            if context is not None:
                await self.browser.safe_close_context(context)
            if acquired:
                self.limiter.release()

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    async def _navigate(self, automation: PageAutomation, section: RewardSection) -> None:
        await automation.navigate(section.url, self.settings.navigation_timeout_ms)
        await self._checkpoint(automation, section.name)

    async def _login(self, automation: PageAutomation) -> None:
        logger.info(lifecycle_message("login_start", account=self.account_id))
        entry = await automation.query_one(self.settings.login_button_selector)
        if entry is None:
            self.already_logged_in = True
            logger.info(
                lifecycle_message(
                    "login_success", account=self.account_id, already_logged_in="true"
                )
            )
            return

        await automation.click(entry)
        await self._checkpoint(automation, "login")

        field = await automation.query_one(
            self.settings.account_input_selector,
            timeout_ms=self.settings.element_timeout_ms,
        )
        if field is None:
            raise ElementNotFound("login input not found")
        await automation.fill(field, self.account_id)
        await self._checkpoint(automation, "id-entry")

        submit = await automation.query_one(self.settings.submit_button_selector)
        if submit is None:
            raise ElementNotFound("login submit button not found")
        await automation.click(submit)
        await automation.wait(self.settings.login_settle_ms)
        await self._checkpoint(automation, "go-click")
        await self._verify_login(automation)
        logger.info(lifecycle_message("login_success", account=self.account_id))

    async def _verify_login(self, automation: PageAutomation) -> None:
        """Raise :class:`InvalidAccount` if the website refused the id.

        A login form still showing after the settle delay, or a rejection
        message anywhere on the page, means the id was not accepted.
        """
        if await automation.query_one(self.settings.account_input_selector) is not None:
            raise InvalidAccount("account id rejected: login form still open")
        try:
            page_text = await automation.page_text()
        except PlaywrightError as exc:
            logger.debug("Could not read page text after login: %s", exc)
            return
        if has_invalid_account_indicator(page_text):
            raise InvalidAccount("account id rejected: invalid id message shown")

    async def _claim_section(
        self, automation: PageAutomation, section: RewardSection
    ) -> List[str]:
        tally: Dict[str, Any] = {"buttons": 0, "clicked": 0, "counted": 0, "errors": 0}
        self.section_tallies[section.name] = tally

        try:
            buttons = await automation.query_all(section.button_selector)
        except Exception as exc:
            tally["enumeration_error"] = str(exc)
            logger.warning(
                f"⚠️ {self.account_id}: could not list buttons in {section.name}: {exc}"
            )
            return []

        tally["buttons"] = len(buttons)
        logger.info(
            f"Found {len(buttons)} reward button(s) in {section.name} for {self.account_id}"
        )

        items: List[str] = []
        for position, button in enumerate(buttons, start=1):
            try:
                item = await self._process_button(automation, section, button, tally)
            except Exception as exc:
                tally["errors"] += 1
                logger.warning(
                    f"⚠️ {self.account_id}: button {position} in {section.name} failed: {exc}"
                )
                continue
            if item is not None:
                items.append(item)
        return items

    async def _process_button(
        self,
        automation: PageAutomation,
        section: RewardSection,
        button: Any,
        tally: Dict[str, Any],
    ) -> Optional[str]:
        """Click one button if eligible; return its label when it counts."""
        await automation.scroll_into_view(button)
        await automation.wait(self.settings.scroll_settle_ms)

        text = await automation.read_text(button)
        enabled = await automation.is_enabled(button)
        if not should_click(text, enabled):
            logger.debug(
                "Skipping %r in %s (enabled=%s)", text, section.name, enabled
            )
            return None

        pre_click = should_count_pre_click(text)
        label = await self._item_label(automation, button, section)

        await automation.click(button)
        tally["clicked"] += 1
        await automation.wait(self.settings.click_settle_ms)

        post_click = await self._post_click_check(automation, button, label)
        if not is_countable(pre_click, post_click):
            logger.info(
                f"Clicked {label} for {self.account_id} but it was not confirmed"
            )
            return None

        tally["counted"] += 1
        logger.info(f"✅ Claimed {label} for {self.account_id}")
        return label

    async def _item_label(
        self, automation: PageAutomation, button: Any, section: RewardSection
    ) -> str:
        try:
            card_text = await automation.container_text(button)
        except Exception as exc:
            logger.debug("Could not read reward card text: %s", exc)
            card_text = ""
        return extract_item_label(card_text, section.fallback_label)

    async def _post_click_check(
        self, automation: PageAutomation, button: Any, label: str
    ) -> bool:
        try:
            if not await automation.is_attached(button):
                return should_count_post_click(False, False, None)
            enabled = await automation.is_enabled(button)
            text = await automation.read_text(button)
        except Exception as exc:
            logger.warning(
                f"Post-click check failed for {label} ({self.account_id}): {exc}"
            )
            return False
        return should_count_post_click(True, enabled, text)

    # ------------------------------------------------------------------
    # Finalizing
    # ------------------------------------------------------------------

    def screenshot_path(self, stage: str) -> str:
        return os.path.join(
            self.settings.screenshot_dir, stage, f"{stage}-{self.account_id}.png"
        )

    async def _checkpoint(self, automation: PageAutomation, stage: str) -> None:
        path = self.screenshot_path(stage)
        try:
            await automation.screenshot(path)
        except Exception as exc:
            logger.warning(f"Screenshot {stage} failed for {self.account_id}: {exc}")

    def _build_attempt(
        self,
        items: List[str],
        error: Optional[str],
        error_type: Optional[ErrorType],
        started: float,
    ) -> ClaimAttempt:
        metadata: Dict[str, Any] = {
            "sections": self.section_tallies,
            "already_logged_in": self.already_logged_in,
            "duration_seconds": round(time.monotonic() - started, 2),
            "states": [
                state.value if section is None else f"{state.value}:{section}"
                for state, section in self.history
            ],
        }
        if error is None:
            return ClaimAttempt.success(
                self.account_id,
                self.username,
                items,
                run_id=self.run_id,
                metadata=metadata,
            )
        metadata["error_type"] = error_type.value if error_type else ErrorType.UNKNOWN.value
        return ClaimAttempt.failure(
            self.account_id,
            self.username,
            error,
            run_id=self.run_id,
            metadata=metadata,
        )

    def _persist(self, attempt: ClaimAttempt) -> None:
        try:
            self.ledger.record(attempt)
            self.persisted = True
        except Exception as exc:
            logger.error(
                f"❌ Claim outcome for {self.account_id} could not be stored: {exc}"
            )
