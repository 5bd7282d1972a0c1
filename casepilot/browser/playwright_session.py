"""
Playwright Session
SessionDriver implementation that resolves human labels to Playwright locators
and acts on them
"""

import logging
from typing import List, Optional, Tuple

from playwright.sync_api import Error as PlaywrightError, Locator, Page

from casepilot.testcases.test_case_model import DiscoveredElement
from .playwright_manager import BrowserManager
from .session_driver import ActionResult, DomSnapshot, SessionDriver, SnapshotElement

logger = logging.getLogger(__name__)

# Roles tried when the step gives no hint
DEFAULT_ROLES = {
    "click": ("button", "link", "tab", "menuitem"),
    "fill": ("textbox", "searchbox"),
    "select": ("combobox", "listbox"),
    "check": ("checkbox", "radio", "switch"),
    "upload": (),
}

SELECTOR_PREFIXES = ("#", ".", "[", "//", "css=", "xpath=")

SNAPSHOT_SCRIPT = """
() => Array.from(document.querySelectorAll(
    'a, button, input, select, textarea, [role], [data-testid], h1, h2, h3, label'
)).slice(0, 300).map(el => ({
    tag: el.tagName.toLowerCase(),
    role: el.getAttribute('role') || '',
    text: (el.innerText || el.value || el.getAttribute('aria-label') || '').trim().slice(0, 120),
    id: el.id || '',
    testid: el.getAttribute('data-testid') || '',
}))
"""

_TAG_ROLES = {
    "a": "link",
    "button": "button",
    "select": "combobox",
    "textarea": "textbox",
    "input": "textbox",
    "h1": "heading",
    "h2": "heading",
    "h3": "heading",
}


class PlaywrightSession(SessionDriver):
    """Executes step actions on a Playwright page"""

    def __init__(self, page: Page, manager: Optional[BrowserManager] = None):
        """
        Args:
            page: Playwright page object
            manager: Owning BrowserManager, closed with the session
        """
        self.page = page
        self.manager = manager

    @classmethod
    def launch(cls, headless: bool = True, ws_url: Optional[str] = None,
               default_timeout_ms: int = 15000) -> "PlaywrightSession":
        """Start a browser and wrap its page"""
        manager = BrowserManager(headless=headless, ws_url=ws_url, default_timeout_ms=default_timeout_ms)
        return cls(manager.start(), manager)

    def close(self) -> None:
        if self.manager:
            self.manager.close()

    # ==========================================
    # Target resolution
    # ==========================================

    def _candidates(self, target: str, role_hint: str, action: str) -> List[Tuple[Locator, DiscoveredElement]]:
        if target.startswith(SELECTOR_PREFIXES):
            strategy = "xpath" if target.startswith(("//", "xpath=")) else "css"
            return [(self.page.locator(target), DiscoveredElement(strategy, target, role_hint))]

        candidates = []
        roles = ((role_hint,) if role_hint else ()) + tuple(
            r for r in DEFAULT_ROLES[action] if r != role_hint
        )
        for role in roles:
            candidates.append((
                self.page.get_by_role(role, name=target),
                DiscoveredElement("role", target, role),
            ))
        default_role = roles[0] if roles else ""
        candidates += [
            (self.page.get_by_label(target), DiscoveredElement("label", target, default_role)),
            (self.page.get_by_placeholder(target), DiscoveredElement("placeholder", target, default_role)),
            (self.page.get_by_text(target, exact=True), DiscoveredElement("text", target, default_role)),
            (self.page.get_by_text(target), DiscoveredElement("text", target, default_role)),
        ]
        return candidates

    def _resolve(self, target: str, role_hint: str, action: str) -> Optional[Tuple[Locator, DiscoveredElement]]:
        """First candidate locator that matches at least one element"""
        if not target:
            return None
        for locator, element in self._candidates(target, role_hint, action):
            try:
                if locator.count() > 0:
                    logger.info(f"Resolved '{target}' via {element.describe()}")
                    return locator.first, element
            except PlaywrightError as e:
                logger.debug(f"Locator {element.describe()} not usable: {e}")
        logger.error(f"No element found for '{target}' ({action})")
        return None

    def _act(self, action: str, target: str, role_hint: str, perform) -> ActionResult:
        resolved = self._resolve(target, role_hint, action)
        if resolved is None:
            return ActionResult.failed(f"no element matches '{target}'")
        locator, element = resolved
        try:
            perform(locator)
            self.page.wait_for_load_state("domcontentloaded")
        except PlaywrightError as e:
            logger.error(f"Failed to {action} '{target}': {e}")
            return ActionResult.failed(f"{action} on {element.describe()} failed: {e}")
        return ActionResult.ok([element], f"{action} on {element.describe()}; page is {self.page.url}")

    # ==========================================
    # Actions
    # ==========================================

    def navigate(self, url: str) -> ActionResult:
        logger.info(f"Navigating to: {url}")
        try:
            response = self.page.goto(url, wait_until="load")
        except PlaywrightError as e:
            logger.error(f"Failed to navigate to {url}: {e}")
            return ActionResult.failed(f"navigation to {url} failed: {e}")
        if response is not None and response.status >= 400:
            return ActionResult.failed(f"navigation to {url} returned HTTP {response.status}")
        title = self.page.title()
        return ActionResult.ok(
            [DiscoveredElement("url", self.page.url, "document")],
            f"loaded {self.page.url} ({title})",
        )

    def click(self, target: str, role_hint: str = "") -> ActionResult:
        logger.info(f"Clicking: {target}")
        return self._act("click", target, role_hint, lambda loc: loc.click())

    def fill(self, target: str, value: str, role_hint: str = "") -> ActionResult:
        logger.info(f"Filling '{target}' with '{value}'")
        return self._act("fill", target, role_hint, lambda loc: loc.fill(value))

    def select(self, target: str, value: str, role_hint: str = "") -> ActionResult:
        logger.info(f"Selecting '{value}' in '{target}'")
        return self._act("select", target, role_hint, lambda loc: loc.select_option(label=value))

    def check(self, target: str, role_hint: str = "") -> ActionResult:
        logger.info(f"Checking: {target}")
        return self._act("check", target, role_hint, lambda loc: loc.check())

    def upload(self, target: str, file_path: str, role_hint: str = "") -> ActionResult:
        logger.info(f"Uploading {file_path} to '{target}'")
        return self._act("upload", target, role_hint, lambda loc: loc.set_input_files(file_path))

    def snapshot(self) -> DomSnapshot:
        """Page text plus the interactive elements with a locator for each"""
        elements = []
        for item in self.page.evaluate(SNAPSHOT_SCRIPT):
            text = item.get("text", "")
            role = item.get("role") or _TAG_ROLES.get(item.get("tag", ""), "")
            if item.get("testid"):
                locator = DiscoveredElement("testid", item["testid"], role)
            elif item.get("id"):
                locator = DiscoveredElement("css", f"#{item['id']}", role)
            elif text and role:
                locator = DiscoveredElement("role", text, role)
            elif text:
                locator = DiscoveredElement("text", text, role)
            else:
                continue
            elements.append(SnapshotElement(text=text, locator=locator))

        return DomSnapshot(
            url=self.page.url,
            title=self.page.title(),
            text=self.page.inner_text("body"),
            elements=elements,
        )
