"""
Playwright Browser Manager
Owns the browser a PlaywrightSession acts on: a local Chromium, or a remote one
attached over CDP
"""

import logging
from typing import Optional

from playwright.sync_api import sync_playwright, Browser, BrowserContext, Page, Playwright

logger = logging.getLogger(__name__)

VIEWPORT = {'width': 1920, 'height': 1080}
LOCALE = 'en-US'


class BrowserManager:
    """One browser, one context and one page per test case"""

    def __init__(
        self,
        headless: bool = True,
        ws_url: Optional[str] = None,
        default_timeout_ms: int = 15000,
    ):
        """
        Args:
            headless: Run the local browser without a window
            ws_url: CDP endpoint to attach to instead of launching (e.g. ws://localhost:3000)
            default_timeout_ms: Timeout for every page action and wait
        """
        self.headless = headless
        self.ws_url = ws_url
        self.default_timeout_ms = default_timeout_ms

        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    def __enter__(self):
        """Context manager entry - start browser"""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - cleanup browser"""
        self.close()

    def start(self) -> Page:
        """Bring up the browser and return the page steps run on; a failed start releases what it opened"""
        try:
            self.playwright = sync_playwright().start()
            if self.ws_url:
                self._attach()
            else:
                self._launch()
            self.page.set_default_timeout(self.default_timeout_ms)
        except Exception as e:
            logger.error(f"Browser start failed: {e}")
            self.close()
            raise

        logger.info(f"Browser ready - default timeout {self.default_timeout_ms}ms")
        return self.page

    def _attach(self) -> None:
        """Reuse the remote browser's first context and page when it has them"""
        logger.info(f"Connecting to remote browser at {self.ws_url}")
        self.browser = self.playwright.chromium.connect_over_cdp(self.ws_url)
        existing = self.browser.contexts
        self.context = existing[0] if existing else self.browser.new_context(viewport=VIEWPORT, locale=LOCALE)
        pages = self.context.pages
        self.page = pages[0] if pages else self.context.new_page()

    def _launch(self) -> None:
        logger.info(f"Starting local Chromium (headless={self.headless})")
        self.browser = self.playwright.chromium.launch(headless=self.headless)
        self.context = self.browser.new_context(viewport=VIEWPORT, locale=LOCALE, accept_downloads=False)
        self.page = self.context.new_page()

    def close(self) -> None:
        """Release page, context, browser and the Playwright driver, in that order"""
        logger.info("Closing browser session")

        for name in ("page", "context", "browser"):
            resource = getattr(self, name)
            if resource is None:
                continue
            try:
                resource.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing {name}: {e}")
            setattr(self, name, None)

        if self.playwright is not None:
            try:
                self.playwright.stop()
            except Exception as e:
                logger.debug(f"Ignoring error while stopping Playwright: {e}")
            self.playwright = None
