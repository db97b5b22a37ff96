import logging
import os
from urllib.parse import urlparse

from playwright.async_api import async_playwright, Page, Browser, ElementHandle

from config import VIEWPORT

logger = logging.getLogger(__name__)


def _proxy_settings() -> dict | None:
    """Playwright proxy settings from the usual environment variables."""
    proxy_url = (os.environ.get("HTTPS_PROXY") or os.environ.get("HTTP_PROXY")
                 or os.environ.get("https_proxy") or os.environ.get("http_proxy"))
    if not proxy_url:
        return None
    parsed = urlparse(proxy_url)
    settings = {"server": f"{parsed.scheme}://{parsed.hostname}:{parsed.port}"}
    if parsed.username:
        settings["username"] = parsed.username
        settings["password"] = parsed.password or ""
    return settings


class BrowserController:
    """The interactive surface: one Chromium page driven through Playwright.

    Every query goes to the live DOM; handles are never cached here.
    Use as ``async with BrowserController() as surface`` so the browser is
    closed whether the workflow succeeds or fails.
    """

    def __init__(self, headless: bool = False):
        self.headless = headless
        self.browser: Browser | None = None
        self.context = None
        self.page: Page | None = None
        self.playwright = None

    async def __aenter__(self) -> "BrowserController":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def start(self) -> None:
        """Launch browser and open a blank page."""
        self.playwright = await async_playwright().start()

        launch_kwargs = {"headless": self.headless}
        proxy = _proxy_settings()
        if proxy:
            launch_kwargs["proxy"] = proxy

        self.browser = await self.playwright.chromium.launch(**launch_kwargs)
        self.context = await self.browser.new_context(viewport=VIEWPORT)
        self.page = await self.context.new_page()
        logger.info("browser started (headless=%s)", self.headless)

    async def stop(self) -> None:
        """Close browser."""
        if self.browser:
            await self.browser.close()
            self.browser = None
        if self.playwright:
            await self.playwright.stop()
            self.playwright = None
        logger.info("browser closed")

    async def navigate(self, url: str) -> None:
        await self.page.goto(url)

    async def get_url(self) -> str:
        """Get current URL."""
        return self.page.url

    async def get_html(self) -> str:
        """Get page HTML."""
        return await self.page.content()

    async def query_all(self, selector: str, within: ElementHandle | None = None) -> list[ElementHandle]:
        """Live query of every element matching selector."""
        root = within if within is not None else self.page
        return await root.query_selector_all(selector)

    async def text_of(self, handle: ElementHandle) -> str:
        return ((await handle.text_content()) or "").strip()

    async def attribute(self, handle: ElementHandle, name: str) -> str | None:
        return await handle.get_attribute(name)

    async def is_rendered(self, handle: ElementHandle) -> bool:
        """True when the element takes part in layout (offsetParent is set)."""
        try:
            return await handle.evaluate("el => el.offsetParent !== null")
        except Exception:
            # Detached between query and evaluation
            return False

    async def is_checked(self, handle: ElementHandle) -> bool:
        return await handle.evaluate("el => !!el.checked")

    async def bounding_box(self, handle: ElementHandle) -> dict | None:
        return await handle.bounding_box()

    async def click(self, handle: ElementHandle) -> None:
        await handle.click()

    async def click_at(self, x: float, y: float) -> None:
        await self.page.mouse.click(x, y)

    async def type_text(self, handle: ElementHandle, text: str) -> None:
        """Replace the field's value with text."""
        await handle.fill(text)

    async def screenshot(self, handle: ElementHandle | None = None, full_page: bool = False) -> bytes:
        """PNG of one element, the viewport, or the whole page."""
        if handle is not None:
            return await handle.screenshot(type="png")
        return await self.page.screenshot(type="png", full_page=full_page)
