"""
Checkpoint Storage
One human-readable Markdown checklist per test case, with the authoritative
machine state embedded as a JSON block. Commits are all-or-nothing.
"""

import hashlib
import json
import logging
import os
import re
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional

from casepilot.errors import CheckpointMismatchError, StoreWriteError
from .test_case_model import CheckpointRecord, StepStatus

logger = logging.getLogger(__name__)

CHECKPOINT_SUFFIX = ".checkpoint.md"

STATUS_MARKERS = {
    StepStatus.PENDING: "[ ]",
    StepStatus.IN_PROGRESS: "[~]",
    StepStatus.SUCCEEDED: "[x]",
    StepStatus.FAILED: "[!]",
}

_STATE_BLOCK = re.compile(r"```json\n(.*?)\n```", re.DOTALL)
_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


def checkpoint_name(case_id: str) -> str:
    """Filename stem for a case id; an id that needs escaping gets a digest suffix so it cannot share a file"""
    slug = _SAFE_NAME.sub("_", case_id)
    if slug == case_id:
        return case_id
    digest = hashlib.sha1(case_id.encode("utf-8")).hexdigest()[:8]
    return f"{slug}-{digest}"


def _one_line(text: str) -> str:
    return " ".join(text.split())


def render_checkpoint(record: CheckpointRecord) -> str:
    """Render a record as a Markdown checklist followed by its JSON state"""
    case = record.case
    lines = [
        f"# Checkpoint: {case.id} - {_one_line(case.name)}",
        "",
        f"- Revision: {record.revision}",
        f"- Updated: {record.updated_at or '-'}",
    ]
    if case.objective:
        lines.append(f"- Objective: {_one_line(case.objective)}")
    if case.preconditions:
        lines.append(f"- Preconditions: {_one_line(case.preconditions)}")
    lines += ["", "## Steps", ""]

    for step in case.steps:
        marker = STATUS_MARKERS[step.status]
        lines.append(f"- {marker} **Step {step.index}** ({step.action_kind.value}, {step.status.value}): {_one_line(step.description)}")
        if step.test_data:
            lines.append(f"  - Data: {_one_line(step.test_data)}")
        if step.expected_result:
            lines.append(f"  - Expected: {_one_line(step.expected_result)}")
        for element in step.discovered_elements:
            lines.append(f"  - Element: `{element.describe()}`")
        if step.observed_behavior:
            lines.append(f"  - Observed: {_one_line(step.observed_behavior)}")
        if step.resolved_method:
            lines.append(f"  - Method: `{step.resolved_method.abstraction_reference}`")

    lines += [
        "",
        "## State",
        "",
        "```json",
        json.dumps(record.to_dict(), indent=2, ensure_ascii=False),
        "```",
        "",
    ]
    return "\n".join(lines)


def parse_checkpoint(text: str) -> CheckpointRecord:
    """Read the JSON state block back out of a rendered checkpoint"""
    blocks = _STATE_BLOCK.findall(text)
    if not blocks:
        raise ValueError("Checkpoint has no JSON state block")
    return CheckpointRecord.from_dict(json.loads(blocks[-1]))


class CheckpointStore:
    """
    Durable per-case execution state

    Directory structure:
    checkpoints/
    ├── {case_id}.checkpoint.md      # Current revision
    └── archive/
        └── {case_id}.checkpoint.md  # Cases whose code was generated
    """

    def __init__(self, base_dir: str = "checkpoints"):
        self.base_dir = Path(base_dir)
        self.archive_dir = self.base_dir / "archive"
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._ensure_dirs()

    def _ensure_dirs(self):
        """Create directories if they don't exist"""
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.archive_dir.mkdir(parents=True, exist_ok=True)

    def _lock_for(self, case_id: str) -> threading.Lock:
        with self._locks_guard:
            if case_id not in self._locks:
                self._locks[case_id] = threading.Lock()
            return self._locks[case_id]

    def path_for(self, case_id: str) -> Path:
        return self.base_dir / f"{checkpoint_name(case_id)}{CHECKPOINT_SUFFIX}"

    # ==========================================
    # Load / Commit
    # ==========================================

    def load(self, case_id: str) -> Optional[CheckpointRecord]:
        """
        Load the last committed record for a case

        Returns:
            The record, or None when the case has never been committed

        Raises:
            CheckpointMismatchError: the file holds a different case's record
        """
        filepath = self.path_for(case_id)
        if not filepath.exists():
            return None
        record = parse_checkpoint(filepath.read_text(encoding="utf-8"))
        if record.case_id != case_id:
            raise CheckpointMismatchError(case_id, record.case_id)
        logger.debug(f"Loaded checkpoint {case_id} at revision {record.revision}")
        return record

    def commit(self, record: CheckpointRecord) -> CheckpointRecord:
        """
        Atomically persist a record as the next revision

        Args:
            record: State to persist; its revision must equal the stored
                revision (0 when nothing is stored yet)

        Returns:
            The persisted record, revision incremented by exactly 1

        Raises:
            StoreWriteError: stale base revision or I/O failure; the stored
                revision is unchanged
            CheckpointMismatchError: the target file holds a different case's record
        """
        case_id = record.case_id
        with self._lock_for(case_id):
            current = self.load(case_id)
            current_revision = current.revision if current else 0
            if record.revision != current_revision:
                raise StoreWriteError(
                    case_id,
                    f"stale revision {record.revision}, store is at {current_revision}",
                )

            committed = record.next_revision()
            self._atomic_write(self.path_for(case_id), render_checkpoint(committed), case_id)
            logger.info(f"Committed checkpoint {case_id} revision {committed.revision}")
            return committed

    def _atomic_write(self, filepath: Path, content: str, case_id: str) -> None:
        """Write to a temp file in the same directory, fsync, then rename over the target"""
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=str(filepath.parent),
                prefix=f".{filepath.name}.",
                suffix=".tmp",
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, filepath)
            tmp_name = None
        except OSError as e:
            raise StoreWriteError(case_id, str(e)) from e
        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)

    # ==========================================
    # Listing / Archive
    # ==========================================

    def list_case_ids(self) -> List[str]:
        """Case ids with a live checkpoint, sorted"""
        case_ids = []
        for filepath in self.base_dir.glob(f"*{CHECKPOINT_SUFFIX}"):
            try:
                case_ids.append(parse_checkpoint(filepath.read_text(encoding="utf-8")).case_id)
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable checkpoint {filepath}: {e}")
        return sorted(case_ids)

    def archive(self, case_id: str) -> Optional[Path]:
        """Move a case's checkpoint to archive/ once its code has been generated"""
        with self._lock_for(case_id):
            filepath = self.path_for(case_id)
            if not filepath.exists():
                return None
            target = self.archive_dir / filepath.name
            shutil.move(str(filepath), str(target))
            logger.info(f"Archived checkpoint {case_id} to {target}")
            return target
