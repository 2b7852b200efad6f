"""Singleton Playwright browser used to read IEEE and publisher article pages."""

import logging
from typing import Optional

from playwright.async_api import async_playwright, Browser, BrowserContext, Page, Playwright

from paper_exporter.config import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)

# Hides the most common automation fingerprints from bot checks
_STEALTH_JS = """
() => {
    Object.defineProperty(navigator, 'webdriver', { get: () => false });
    Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
    window.chrome = { runtime: {} };
}
"""

_XPL_METADATA_JS = """
() => (window.xplGlobal && window.xplGlobal.document && window.xplGlobal.document.metadata) || null
"""


class BrowserManager:
    """Singleton manager for the Playwright browser instance."""

    _instance: Optional['BrowserManager'] = None
    _playwright: Optional[Playwright] = None
    _browser: Optional[Browser] = None
    _context: Optional[BrowserContext] = None
    _page: Optional[Page] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    async def get_instance(cls) -> 'BrowserManager':
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    async def launch(self, headless: bool = True, viewport_width: int = 1440, viewport_height: int = 900) -> dict:
        """Launch Chromium unless it is already running."""
        if self.is_running():
            return {
                "status": "already_running",
                "message": "Browser is already launched and ready.",
                "url": self._page.url,
            }

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=headless,
            args=["--disable-blink-features=AutomationControlled"],
        )
        self._context = await self._browser.new_context(
            viewport={"width": viewport_width, "height": viewport_height},
            user_agent=DEFAULT_USER_AGENT,
            locale="en-US",
        )
        await self._context.add_init_script(_STEALTH_JS)
        self._page = await self._context.new_page()
        logger.info("browser launched headless=%s", headless)

        return {
            "status": "launched",
            "message": f"Browser launched successfully ({'headless' if headless else 'headed'} mode).",
            "viewport": f"{viewport_width}x{viewport_height}",
        }

    async def ensure_page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser not launched. Please call browser_launch first.")
        return self._page

    def is_running(self) -> bool:
        return self._browser is not None and self._page is not None

    async def read_ieee_metadata(self, url: str, timeout: int = 60000) -> Optional[dict]:
        """Open an IEEE document page and return its ``xplGlobal`` metadata."""
        page = await self.ensure_page()
        await page.goto(url, wait_until="domcontentloaded", timeout=timeout)
        metadata = await page.evaluate(_XPL_METADATA_JS)
        if not isinstance(metadata, dict):
            logger.warning("no xplGlobal metadata on %s", url)
            return None
        return metadata

    async def read_page_html(self, url: str, timeout: int = 60000) -> str:
        """Open ``url`` and return the rendered page markup."""
        page = await self.ensure_page()
        await page.goto(url, wait_until="domcontentloaded", timeout=timeout)
        return await page.content()

    async def close(self) -> dict:
        if self._browser is None:
            return {"status": "not_running", "message": "Browser is not running."}

        await self._browser.close()
        if self._playwright:
            await self._playwright.stop()

        self._browser = None
        self._context = None
        self._page = None
        self._playwright = None
        return {"status": "closed", "message": "Browser closed successfully."}
