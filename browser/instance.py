"""Browser instance management for Rewardbot.

Provides :class:`BrowserManager`, which wraps ``Camoufox`` (a hardened
Firefox fork driven through Playwright).  Features:

* Headless or visible operation with realistic screen constraints.
* One isolated ``BrowserContext`` per claim session, so accounts never share
  cookies or storage.
* Image blocking and a small set of privacy-oriented Firefox prefs.
* Double-close protection when tearing contexts down.
* Liveness check and restart for a browser process that died.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Dict, List, Optional

from browserforge.fingerprints import Screen
from camoufox.async_api import AsyncCamoufox
from playwright.async_api import BrowserContext, Page

logger = logging.getLogger(__name__)

CONTEXT_CLOSE_TIMEOUT = 5.0
RESTART_PAUSE = 2.0
DEFAULT_VIEWPORT = {"width": 1366, "height": 768}

FIREFOX_PREFS: Dict[str, Any] = {
    # Telemetry and crash reporting
    "toolkit.telemetry.enabled": False,
    "datareporting.policy.dataSubmissionEnabled": False,
    "datareporting.healthreport.uploadEnabled": False,
    "browser.crashReports.unsubmittedCheck.autoSubmit2": False,
    # First-run noise
    "browser.shell.checkDefaultBrowser": False,
    "browser.startup.homepage_override.mstone": "ignore",
    "dom.push.enabled": False,
    "extensions.pocket.enabled": False,
    # WebRTC leak prevention
    "media.peerconnection.ice.default_address_only": True,
    "media.peerconnection.ice.no_host": True,
    # No speculative traffic
    "network.dns.disablePrefetch": True,
    "network.prefetch-next": False,
    "network.http.speculative-parallel-limit": 0,
}


class BrowserManager:
    """Lifecycle of one Camoufox browser shared by all claim sessions.

    Instantiate once at startup, ``launch()`` it, hand it to the scheduler,
    and ``close()`` it on shutdown.  Sessions call :meth:`create_context`
    and :meth:`new_page`, and always finish with
    :meth:`safe_close_context`.
    """

    def __init__(
        self,
        headless: bool = True,
        block_images: bool = False,
        timeout: int = 30000,
        user_agents: Optional[List[str]] = None,
    ) -> None:
        """Initialise the BrowserManager.

        Args:
            headless: Run without a visible window.
            block_images: Ask Camoufox to skip image loading.
            timeout: Default Playwright timeout for new pages (ms).
            user_agents: Optional User-Agent strings picked at random per
                context.  Empty means Camoufox's generated fingerprint.
        """
        self.headless = headless
        self.block_images = block_images
        self.timeout = timeout
        self.user_agents = user_agents or []
        self.browser: Optional[Any] = None
        self.camoufox: Optional[AsyncCamoufox] = None

        # Track closed contexts to prevent double-close errors
        self._closed_contexts: set = set()

    async def __aenter__(self) -> "BrowserManager":
        return await self.launch()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def launch(self) -> "BrowserManager":
        """Start the Camoufox browser process.

        Returns:
            ``self`` for chaining.

        Raises:
            Exception: If the browser fails to start (after one retry with
                GeoIP disabled when the GeoIP database is the culprit).
        """
        logger.info("Launching Camoufox (Headless: %s)...", self.headless)

        kwargs: Dict[str, Any] = {
            "headless": self.headless,
            "geoip": True,
            "humanize": True,
            "block_images": self.block_images,
            "firefox_user_prefs": dict(FIREFOX_PREFS),
        }
        # Headless auto-detection picks 1024x768, which has few fingerprints
        if self.headless:
            kwargs["screen"] = Screen(max_width=1920, max_height=1080)

        try:
            self.camoufox = AsyncCamoufox(**kwargs)
            self.browser = await self.camoufox.__aenter__()
            return self
        except Exception as e:
            if "GeoLite2" not in str(e) and "geoip" not in str(e).lower():
                raise
            logger.warning(
                "GeoIP database invalid or missing. "
                "Retrying launch with geoip disabled."
            )
            kwargs["geoip"] = False
            self.camoufox = AsyncCamoufox(**kwargs)
            self.browser = await self.camoufox.__aenter__()
            return self

    async def create_context(
        self,
        user_agent: Optional[str] = None,
        locale: str = "en-US",
    ) -> BrowserContext:
        """Create an isolated browser context.

        Args:
            user_agent: Explicit User-Agent; otherwise one of
                ``user_agents`` is chosen at random (if configured).
            locale: Browser locale.

        Returns:
            A fresh Playwright ``BrowserContext``.

        Raises:
            RuntimeError: If :meth:`launch` has not been called.
        """
        if not self.browser:
            raise RuntimeError("Browser not launched. Call launch() first.")

        options: Dict[str, Any] = {
            "viewport": dict(DEFAULT_VIEWPORT),
            "locale": locale,
        }
        agent = user_agent or (
            random.choice(self.user_agents) if self.user_agents else None
        )
        if agent:
            options["user_agent"] = agent

        context = await self.browser.new_context(**options)
        context.set_default_timeout(self.timeout)
        return context

    async def new_page(self, context: BrowserContext) -> Page:
        """Open a page in *context*."""
        page = await context.new_page()
        page.set_default_timeout(self.timeout)
        return page

    async def safe_close_context(self, context: Optional[BrowserContext]) -> bool:
        """Close *context*, tolerating contexts that are already gone.

        Returns:
            ``True`` if the context was closed by this call, ``False`` if it
            was already closed, the close timed out, or it failed.
        """
        if not context:
            return False

        context_id = id(context)
        if context_id in self._closed_contexts:
            logger.debug("Context %s already marked as closed", context_id)
            return False

        try:
            await asyncio.wait_for(context.close(), timeout=CONTEXT_CLOSE_TIMEOUT)
            logger.debug("Successfully closed context %s", context_id)
            return True
        except asyncio.TimeoutError:
            logger.warning("Context close timed out for %s", context_id)
            return False
        except Exception as e:
            err_str = str(e).lower()
            if "closed" in err_str and ("target" in err_str or "connection" in err_str):
                logger.debug("Context close on already-closed context: %s", e)
            else:
                logger.warning("Context close failed: %s", e)
            return False
        finally:
            self._closed_contexts.add(context_id)

    # ------------------------------------------------------------------
    # Health checks
    # ------------------------------------------------------------------

    async def check_health(self) -> bool:
        """Verify the browser process is still responsive.

        Opens and immediately closes a throwaway context.

        Returns:
            ``True`` if the browser responded, ``False`` otherwise.
        """
        if not self.browser:
            return False
        try:
            context = await self.browser.new_context()
            await context.close()
            return True
        except Exception as e:
            logger.warning("Browser health check failed: %s", e)
            return False

    async def restart(self) -> None:
        """Close the browser and launch a fresh one."""
        logger.info("Restarting browser instance...")
        await self.close()
        await asyncio.sleep(RESTART_PAUSE)
        await self.launch()
        logger.info("Browser instance restarted.")

    async def close(self) -> None:
        """Shut down the browser and clear tracking state."""
        if self.browser and self.camoufox:
            try:
                await self.camoufox.__aexit__(None, None, None)
            except Exception as e:
                logger.debug("Error during browser exit: %s", e)
        self.browser = None
        self.camoufox = None
        self._closed_contexts.clear()
        logger.info("Browser closed.")
