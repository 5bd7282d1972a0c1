"""
Session Driver Interface
The narrow capability the orchestrator uses to act on a live application
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from casepilot.testcases.test_case_model import DiscoveredElement


@dataclass
class ActionResult:
    """Outcome of one driver call"""
    success: bool
    locators: List[DiscoveredElement] = field(default_factory=list)
    message: str = ""             # What the session observed
    error: Optional[str] = None

    @classmethod
    def ok(cls, locators: List[DiscoveredElement], message: str = "") -> "ActionResult":
        return cls(success=True, locators=list(locators), message=message)

    @classmethod
    def failed(cls, error: str) -> "ActionResult":
        return cls(success=False, error=error, message=error)


@dataclass
class SnapshotElement:
    """An element visible in a DOM snapshot, with the locator that reaches it"""
    text: str
    locator: DiscoveredElement


@dataclass
class DomSnapshot:
    """Text content and interactive elements of the current page"""
    url: str
    title: str = ""
    text: str = ""
    elements: List[SnapshotElement] = field(default_factory=list)

    def contains(self, fragment: str) -> bool:
        needle = fragment.lower()
        if needle in self.text.lower() or needle in self.title.lower():
            return True
        return any(needle in e.text.lower() for e in self.elements)

    def find(self, fragment: str) -> Optional[DiscoveredElement]:
        """
        Locator for the element showing a fragment; a text locator when the
        fragment is only present in the page text; None when absent
        """
        needle = fragment.lower()
        for element in self.elements:
            if needle in element.text.lower():
                return element.locator
        if needle in self.text.lower() or needle in self.title.lower():
            return DiscoveredElement("text", fragment, "text")
        return None


class SessionDriver(ABC):
    """
    Interactive session capability

    Each action returns an ActionResult carrying, on success, the concrete
    locator(s) that resolved the target. Implementations own action timeouts;
    a timeout is reported as a failed result or raised.
    """

    @abstractmethod
    def navigate(self, url: str) -> ActionResult:
        ...

    @abstractmethod
    def click(self, target: str, role_hint: str = "") -> ActionResult:
        ...

    @abstractmethod
    def fill(self, target: str, value: str, role_hint: str = "") -> ActionResult:
        ...

    @abstractmethod
    def select(self, target: str, value: str, role_hint: str = "") -> ActionResult:
        ...

    @abstractmethod
    def check(self, target: str, role_hint: str = "") -> ActionResult:
        ...

    @abstractmethod
    def upload(self, target: str, file_path: str, role_hint: str = "") -> ActionResult:
        ...

    @abstractmethod
    def snapshot(self) -> DomSnapshot:
        ...

    def close(self) -> None:
        """Release the session"""
