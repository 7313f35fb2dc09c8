import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from browser.automation import NavigationTimeout, PageAutomation
from browser.instance import BrowserManager


def make_camoufox(browser=None):
    camoufox = MagicMock()
    camoufox.__aenter__ = AsyncMock(return_value=browser or MagicMock())
    camoufox.__aexit__ = AsyncMock(return_value=False)
    return camoufox


class TestBrowserManager:

    @pytest.mark.asyncio
    async def test_launch_passes_headless_screen(self):
        camoufox = make_camoufox()
        with patch("browser.instance.AsyncCamoufox", return_value=camoufox) as factory:
            manager = await BrowserManager(headless=True, block_images=True).launch()

        kwargs = factory.call_args.kwargs
        assert kwargs["headless"] is True
        assert kwargs["block_images"] is True
        assert "screen" in kwargs
        assert "firefox_user_prefs" in kwargs
        assert manager.browser is not None

    @pytest.mark.asyncio
    async def test_visible_launch_has_no_screen_constraint(self):
        with patch("browser.instance.AsyncCamoufox", return_value=make_camoufox()) as factory:
            await BrowserManager(headless=False).launch()
        assert "screen" not in factory.call_args.kwargs

    @pytest.mark.asyncio
    async def test_geoip_failure_retries_without_geoip(self):
        broken = MagicMock()
        broken.__aenter__ = AsyncMock(side_effect=RuntimeError("GeoLite2-City.mmdb is invalid"))
        with patch("browser.instance.AsyncCamoufox", side_effect=[broken, make_camoufox()]) as factory:
            await BrowserManager().launch()
        assert factory.call_args_list[1].kwargs["geoip"] is False

    @pytest.mark.asyncio
    async def test_other_launch_errors_propagate(self):
        broken = MagicMock()
        broken.__aenter__ = AsyncMock(side_effect=RuntimeError("no display"))
        with patch("browser.instance.AsyncCamoufox", return_value=broken):
            with pytest.raises(RuntimeError):
                await BrowserManager().launch()

    @pytest.mark.asyncio
    async def test_create_context_requires_launch(self):
        with pytest.raises(RuntimeError):
            await BrowserManager().create_context()

    @pytest.mark.asyncio
    async def test_create_context_uses_configured_user_agent(self):
        browser = MagicMock()
        context = MagicMock()
        browser.new_context = AsyncMock(return_value=context)
        with patch("browser.instance.AsyncCamoufox", return_value=make_camoufox(browser)):
            manager = await BrowserManager(user_agents=["UA-1"], timeout=1234).launch()

        result = await manager.create_context()

        assert result is context
        assert browser.new_context.call_args.kwargs["user_agent"] == "UA-1"
        context.set_default_timeout.assert_called_once_with(1234)

    @pytest.mark.asyncio
    async def test_safe_close_context_only_once(self):
        manager = BrowserManager()
        context = MagicMock()
        context.close = AsyncMock()

        assert await manager.safe_close_context(context) is True
        assert await manager.safe_close_context(context) is False
        context.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_safe_close_context_tolerates_errors(self):
        manager = BrowserManager()
        context = MagicMock()
        context.close = AsyncMock(side_effect=PlaywrightError("Target closed"))
        assert await manager.safe_close_context(context) is False
        assert await manager.safe_close_context(None) is False

    @pytest.mark.asyncio
    async def test_close_exits_camoufox(self):
        camoufox = make_camoufox()
        with patch("browser.instance.AsyncCamoufox", return_value=camoufox):
            manager = await BrowserManager().launch()
        await manager.close()
        camoufox.__aexit__.assert_awaited_once()
        assert manager.browser is None

    @pytest.mark.asyncio
    async def test_check_health_opens_and_closes_a_context(self):
        browser = MagicMock()
        context = MagicMock()
        context.close = AsyncMock()
        browser.new_context = AsyncMock(return_value=context)
        with patch("browser.instance.AsyncCamoufox", return_value=make_camoufox(browser)):
            manager = await BrowserManager().launch()

        assert await manager.check_health() is True
        context.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_check_health_false_when_browser_is_gone(self):
        assert await BrowserManager().check_health() is False

        manager = BrowserManager()
        manager.browser = MagicMock()
        manager.browser.new_context = AsyncMock(
            side_effect=PlaywrightError("Target page, context or browser has been closed")
        )
        assert await manager.check_health() is False

    @pytest.mark.asyncio
    async def test_restart_relaunches(self):
        old, new = make_camoufox(), make_camoufox()
        with patch("browser.instance.RESTART_PAUSE", 0), \
                patch("browser.instance.AsyncCamoufox", side_effect=[old, new]):
            manager = await BrowserManager().launch()
            await manager.restart()

        old.__aexit__.assert_awaited_once()
        assert manager.camoufox is new
        assert manager.browser is not None


class TestPageAutomation:

    @pytest.mark.asyncio
    async def test_navigate_waits_for_network_idle(self):
        page = MagicMock()
        page.goto = AsyncMock()
        await PageAutomation(page).navigate("https://example.invalid", 30000)
        page.goto.assert_awaited_once_with(
            "https://example.invalid", wait_until="networkidle", timeout=30000
        )

    @pytest.mark.asyncio
    async def test_navigate_timeout_is_translated(self):
        page = MagicMock()
        page.goto = AsyncMock(side_effect=PlaywrightTimeoutError("Timeout 30000ms exceeded"))
        with pytest.raises(NavigationTimeout):
            await PageAutomation(page).navigate("https://example.invalid", 30000)

    @pytest.mark.asyncio
    async def test_query_all_filters_invisible(self):
        visible = MagicMock()
        visible.is_visible = AsyncMock(return_value=True)
        hidden = MagicMock()
        hidden.is_visible = AsyncMock(return_value=False)
        page = MagicMock()
        page.query_selector_all = AsyncMock(return_value=[hidden, visible])

        automation = PageAutomation(page)
        assert await automation.query_all("button") == [visible]
        assert await automation.query_all("button", visible_only=False) == [hidden, visible]

    @pytest.mark.asyncio
    async def test_query_one_with_timeout_returns_none_when_absent(self):
        page = MagicMock()
        page.wait_for_selector = AsyncMock(side_effect=PlaywrightTimeoutError("Timeout"))
        assert await PageAutomation(page).query_one("input", timeout_ms=100) is None

    @pytest.mark.asyncio
    async def test_is_attached_false_when_handle_is_gone(self):
        element = MagicMock()
        element.evaluate = AsyncMock(side_effect=PlaywrightError("Execution context was destroyed"))
        assert await PageAutomation(MagicMock()).is_attached(element) is False

    @pytest.mark.asyncio
    async def test_read_text_strips(self):
        element = MagicMock()
        element.inner_text = AsyncMock(return_value="  FREE \n")
        assert await PageAutomation(MagicMock()).read_text(element) == "FREE"

    @pytest.mark.asyncio
    async def test_screenshot_creates_directory(self, tmp_path):
        page = MagicMock()
        page.screenshot = AsyncMock()
        path = tmp_path / "final-page" / "final-page-1.png"

        await PageAutomation(page).screenshot(str(path))

        assert path.parent.is_dir()
        page.screenshot.assert_awaited_once_with(path=str(path), full_page=True)

    @pytest.mark.asyncio
    async def test_wait_skips_zero(self):
        page = MagicMock()
        page.wait_for_timeout = AsyncMock()
        automation = PageAutomation(page)
        await automation.wait(0)
        page.wait_for_timeout.assert_not_awaited()
        await automation.wait(50)
        page.wait_for_timeout.assert_awaited_once_with(50)

    @pytest.mark.asyncio
    async def test_page_text_reads_body(self):
        page = MagicMock()
        page.inner_text = AsyncMock(return_value="Invalid Unique ID")
        assert await PageAutomation(page).page_text() == "Invalid Unique ID"
        page.inner_text.assert_awaited_once_with("body")
