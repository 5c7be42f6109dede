#!/usr/bin/env python3
"""Draft sessions: the explicit context one editing session works in.

A DraftSession owns the narrative sections, project metadata, reference
text and checklist state. During an improvement run the orchestrator is
the only writer: sections being streamed are locked against direct edits
and a second run on the same session is rejected.

Sessions live in memory only and vanish with the process.
"""

import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Set

from grantkit.checklist.hints import categories_needing_improvement, hints_by_section
from grantkit.checklist.rubric import CHECKLIST
from grantkit.checklist.state import ChecklistState
from grantkit.drafting.sections import (
    FILLED_THRESHOLD,
    SECTION_KEYS,
    ProjectMetadata,
    empty_sections,
    validate_section_key,
)


class SessionError(RuntimeError):
    """Base class for session state conflicts."""


class ImprovementInProgressError(SessionError):
    """Raised when a run is started while another is active."""


class SectionLockedError(SessionError):
    """Raised on a direct edit to a section that is being streamed."""


def _session_id():
    """Generate a session ID: GS- followed by 12 hex characters."""
    return "GS-" + secrets.token_hex(6)


def _now():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class DraftSession:
    session_id: str = field(default_factory=_session_id)
    metadata: ProjectMetadata = field(default_factory=ProjectMetadata)
    sections: Dict[str, str] = field(default_factory=empty_sections)
    reference_text: str = ""
    checklist: ChecklistState = field(default_factory=ChecklistState)
    improving: Set[str] = field(default_factory=set)
    created_at: str = field(default_factory=_now)
    _run_active: bool = field(default=False, repr=False)
    _run_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _state_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def run_active(self) -> bool:
        return self._run_active

    def snapshot(self) -> Dict[str, str]:
        """Copy of the current section texts in catalogue order."""
        return {key: self.sections.get(key, "") for key in SECTION_KEYS}

    def set_section(self, key: str, text: str) -> None:
        """Direct (user) edit of one section."""
        validate_section_key(key)
        with self._state_lock:
            if key in self.improving:
                raise SectionLockedError(f"Section '{key}' is being improved")
            self.sections[key] = text or ""

    def lock_section(self, key: str) -> None:
        with self._state_lock:
            self.improving.add(key)

    def unlock_section(self, key: str) -> None:
        with self._state_lock:
            self.improving.discard(key)

    def begin_run(self) -> None:
        with self._run_lock:
            if self._run_active:
                raise ImprovementInProgressError(
                    f"An improvement run is already active for {self.session_id}"
                )
            self._run_active = True

    def end_run(self) -> None:
        self._run_active = False
        with self._state_lock:
            self.improving.clear()

    def progress(self) -> dict:
        filled = {key: len(self.sections.get(key, "")) > FILLED_THRESHOLD for key in SECTION_KEYS}
        return {
            "sections": filled,
            "filled": sum(filled.values()),
            "total": len(SECTION_KEYS),
            "info": bool(self.metadata.agency_name and self.metadata.project_name),
            "reference": bool(self.reference_text),
        }

    def to_dict(self, rubric=CHECKLIST) -> dict:
        with self._state_lock:
            improving = sorted(self.improving)
        checklist = self.checklist.copy()
        return {
            "session_id": self.session_id,
            "created_at": self.created_at,
            "metadata": self.metadata.to_dict(),
            "sections": self.snapshot(),
            "reference_chars": len(self.reference_text),
            "checklist": checklist.to_dict(),
            "score": checklist.score(rubric),
            "hints": hints_by_section(
                checklist, categories_needing_improvement(checklist, rubric), rubric,
            ),
            "progress": self.progress(),
            "improving": improving,
            "run_active": self._run_active,
        }


class SessionStore:
    """Process-local registry of draft sessions."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, DraftSession] = {}

    def create(self, metadata: Optional[dict] = None) -> DraftSession:
        session = DraftSession(metadata=ProjectMetadata.from_dict(metadata or {}))
        with self._lock:
            self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> Optional[DraftSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def discard(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
