"""
Method Catalog
JSON-file registry of reusable page-object methods and the steps they satisfy
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from casepilot.errors import CatalogError
from casepilot.testcases.test_case_model import ActionKind

logger = logging.getLogger(__name__)


@dataclass
class MatchPattern:
    """
    Conditions a step must meet for an entry to apply.
    The regexes are searched case-insensitively; None means "any".
    """
    action: ActionKind
    description: Optional[str] = None
    test_data: Optional[str] = None
    locator: Optional[str] = None     # Searched in "strategy=value" of each discovered element

    def __post_init__(self):
        for name in ("description", "test_data", "locator"):
            value = getattr(self, name)
            if value is not None:
                try:
                    re.compile(value)
                except re.error as e:
                    raise CatalogError(f"Invalid {name} pattern {value!r}: {e}")

    def to_dict(self) -> dict:
        data = {"action": self.action.value}
        for name in ("description", "test_data", "locator"):
            if getattr(self, name) is not None:
                data[name] = getattr(self, name)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MatchPattern":
        try:
            action = ActionKind.parse(data["action"])
        except (KeyError, ValueError) as e:
            raise CatalogError(f"Match pattern needs a valid 'action': {e}")
        return cls(
            action=action,
            description=data.get("description"),
            test_data=data.get("test_data"),
            locator=data.get("locator"),
        )


@dataclass
class MethodCatalogEntry:
    """A reusable abstraction method"""
    signature: str                    # What it does, in domain terms
    abstraction_reference: str        # PageClass.methodName
    match_patterns: List[MatchPattern] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "signature": self.signature,
            "abstraction_reference": self.abstraction_reference,
            "match_patterns": [p.to_dict() for p in self.match_patterns],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MethodCatalogEntry":
        reference = data.get("abstraction_reference", "")
        if not re.fullmatch(r"[A-Za-z_$][\w$]*\.[A-Za-z_$][\w$]*", reference):
            raise CatalogError(f"abstraction_reference must look like PageClass.methodName, got {reference!r}")
        return cls(
            signature=data.get("signature", ""),
            abstraction_reference=reference,
            match_patterns=[MatchPattern.from_dict(p) for p in data.get("match_patterns", [])],
        )


class MethodCatalog:
    """
    Ordered collection of catalog entries

    File format:
    {
      "entries": [
        {"signature": "...", "abstraction_reference": "LoginPage.open",
         "match_patterns": [{"action": "Navigate", "test_data": "/login"}]}
      ]
    }
    """

    def __init__(self, entries: Optional[List[MethodCatalogEntry]] = None, path: Optional[Path] = None):
        self.entries: List[MethodCatalogEntry] = list(entries or [])
        self.path = path

    def __iter__(self):
        return iter(self.entries)

    def __len__(self):
        return len(self.entries)

    @classmethod
    def load(cls, path: str) -> "MethodCatalog":
        """Load a catalog file; a missing file is an empty catalog"""
        filepath = Path(path)
        if not filepath.exists():
            logger.warning(f"Method catalog {filepath} not found - starting with an empty catalog")
            return cls(path=filepath)
        try:
            with open(filepath, 'r', encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CatalogError(f"Cannot read method catalog {filepath}: {e}")

        catalog = cls.from_dict(data, path=filepath)
        logger.info(f"Loaded {len(catalog)} catalog entries from {filepath}")
        return catalog

    @classmethod
    def from_dict(cls, data: dict, path: Optional[Path] = None) -> "MethodCatalog":
        return cls([MethodCatalogEntry.from_dict(e) for e in data.get("entries", [])], path=path)

    def save(self, path: Optional[str] = None) -> Path:
        filepath = Path(path) if path else self.path
        if filepath is None:
            raise CatalogError("No path to save the method catalog to")
        with open(filepath, 'w', encoding="utf-8") as f:
            json.dump({"entries": [e.to_dict() for e in self.entries]}, f, indent=2)
        logger.info(f"Saved {len(self.entries)} catalog entries to {filepath}")
        return filepath

    def add_entry(self, entry: MethodCatalogEntry) -> None:
        """Append an entry (human or tooling decision; the resolver never calls this)"""
        if self.find(entry.abstraction_reference):
            raise CatalogError(f"{entry.abstraction_reference} is already in the catalog")
        self.entries.append(entry)
        logger.info(f"Added catalog entry {entry.abstraction_reference}")

    def find(self, abstraction_reference: str) -> Optional[MethodCatalogEntry]:
        for entry in self.entries:
            if entry.abstraction_reference == abstraction_reference:
                return entry
        return None
