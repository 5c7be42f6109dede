#!/usr/bin/env python3
"""Improvement Orchestrator: the checklist-driven rewrite loop.

One improvement run walks this state machine:

    idle → selecting_categories → extracting_hints →
    regenerating_sections → awaiting_stream → ... → re_evaluating → idle

Categories are processed in rubric order and, inside a category, sections
in CATEGORY_SECTIONS order, strictly one at a time. The run keeps its own
working snapshot of section texts, updated as soon as a section finishes
streaming, so a section touched by two categories is rewritten the second
time from the first rewrite's output. The final evaluation reads that
same snapshot.

A failed section keeps whatever text streamed before the failure and the
run moves on; the re-evaluation still happens over what was achieved.
"""

import asyncio
import functools
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple

from grantkit.audit.audit_logger import log_event
from grantkit.checklist.evaluator import EvaluationResult, run_evaluation
from grantkit.checklist.hints import categories_needing_improvement, extract_hints
from grantkit.checklist.rubric import CATEGORY_SECTIONS, CHECKLIST, validate_category_map
from grantkit.drafting.regenerator import RegenerationResult, accumulate, regenerate
from grantkit.drafting.session import DraftSession

logger = logging.getLogger("grantkit.drafting.orchestrator")

PHASE_IDLE = "idle"
PHASE_SELECTING = "selecting_categories"
PHASE_EXTRACTING = "extracting_hints"
PHASE_REGENERATING = "regenerating_sections"
PHASE_AWAITING = "awaiting_stream"
PHASE_REEVALUATING = "re_evaluating"

# Phase transitions: from → allowed_to (any phase may drop back to idle)
TRANSITIONS = {
    PHASE_IDLE: [PHASE_SELECTING],
    PHASE_SELECTING: [PHASE_EXTRACTING],
    PHASE_EXTRACTING: [PHASE_REGENERATING, PHASE_EXTRACTING, PHASE_REEVALUATING],
    PHASE_REGENERATING: [PHASE_AWAITING],
    PHASE_AWAITING: [PHASE_REGENERATING, PHASE_EXTRACTING, PHASE_REEVALUATING],
    PHASE_REEVALUATING: [],
}

RUN_MESSAGES = {
    "noop": "보완이 필요한 항목이 없어 개선할 내용이 없습니다.",
    "completed": "AI 개선과 재검토가 완료되었습니다.",
    "partial": "일부 섹션 개선 중 오류가 발생했습니다. 작성된 부분까지 반영하고 재검토했습니다.",
    "cancelled": "개선이 중단되었습니다. 작성된 부분까지 보존했습니다.",
}

Regenerator = Callable[..., AsyncIterator[str]]
UpdateCallback = Callable[[str, str], None]


def _now():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _run_id():
    """Generate a run ID: IR- followed by 8 hex characters."""
    return "IR-" + secrets.token_hex(4)


@dataclass
class ImprovementRun:
    """Record of one improvement run."""
    run_id: str = field(default_factory=_run_id)
    requested_category: Optional[int] = None
    categories: List[int] = field(default_factory=list)
    skipped_categories: List[int] = field(default_factory=list)
    units: List[Tuple[int, RegenerationResult]] = field(default_factory=list)
    evaluation: Optional[EvaluationResult] = None
    cancelled: bool = False
    started_at: str = field(default_factory=_now)
    finished_at: Optional[str] = None

    @property
    def status(self) -> str:
        """noop | completed | partial | cancelled"""
        if self.cancelled:
            return "cancelled"
        if not self.units:
            return "noop"
        if any(r.status != "completed" for _, r in self.units):
            return "partial"
        return "completed"

    @property
    def message(self) -> str:
        return RUN_MESSAGES[self.status]

    @property
    def regenerated_sections(self) -> List[str]:
        return [r.section for _, r in self.units]

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "message": self.message,
            "requested_category": self.requested_category,
            "categories": self.categories,
            "skipped_categories": self.skipped_categories,
            "sections": [dict(category=ci, **r.to_dict()) for ci, r in self.units],
            "evaluation": self.evaluation.to_dict() if self.evaluation else None,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


class ImprovementOrchestrator:
    """Coordinates hint extraction, regeneration and re-evaluation for a session.

    ``regenerator`` is called as ``(section, metadata, reference_text,
    current_content, hints)`` and must return an async iterator of text
    fragments. ``evaluator`` is called as ``(narrative, metadata, rubric)``
    and may return an EvaluationResult or a plain verdict mapping.
    """

    def __init__(self, session: DraftSession, rubric=CHECKLIST,
                 section_map: Optional[Dict[int, Sequence[str]]] = None,
                 regenerator: Optional[Regenerator] = None,
                 evaluator: Optional[Callable] = None):
        self.session = session
        self.rubric = rubric
        self.section_map = CATEGORY_SECTIONS if section_map is None else section_map
        validate_category_map(self.rubric, self.section_map)
        self._regenerate = regenerator or functools.partial(
            regenerate, session_id=session.session_id,
        )
        self._evaluate = evaluator or run_evaluation
        self.phase = PHASE_IDLE
        self.phase_history: List[str] = []

    # -- state machine -----------------------------------------------------

    def _enter(self, phase: str) -> None:
        if phase != PHASE_IDLE and phase not in TRANSITIONS[self.phase]:
            raise RuntimeError(f"Cannot transition from {self.phase} to {phase}")
        if phase != self.phase:
            logger.info("Session %s: %s -> %s", self.session.session_id, self.phase, phase)
        self.phase = phase
        self.phase_history.append(phase)

    # -- public API --------------------------------------------------------

    async def improve(self, category: Optional[int] = None,
                      on_update: Optional[UpdateCallback] = None,
                      cancel: Optional[asyncio.Event] = None) -> ImprovementRun:
        """Run one improvement pass.

        Args:
            category: Rubric index to improve, or None for every category
                with at least one evaluator-flagged unmet criterion.
            on_update: Called as ``(section, text_so_far)`` for every
                streamed fragment.
            cancel: Event that stops the run after the current fragment.
                Nothing further is regenerated and no re-evaluation runs.

        Raises:
            ValueError: ``category`` is outside the rubric.
            ImprovementInProgressError: the session already has a run.
        """
        if category is not None and not 0 <= category < len(self.rubric):
            raise ValueError(
                f"Category {category} outside rubric of {len(self.rubric)} categories"
            )
        self.session.begin_run()
        run = ImprovementRun(requested_category=category)
        try:
            await self._run(run, category, on_update, cancel)
        finally:
            self.session.end_run()
            self._enter(PHASE_IDLE)
            run.finished_at = _now()
            log_event(
                "improvement.run", "orchestrator", run.status,
                session_id=self.session.session_id,
                metadata={
                    "run_id": run.run_id,
                    "categories": run.categories,
                    "sections": run.regenerated_sections,
                },
            )
        logger.info("Run %s finished: %s (%d sections)",
                    run.run_id, run.status, len(run.units))
        return run

    async def reevaluate(self) -> EvaluationResult:
        """Evaluate the current sections and merge verdicts, outside a run."""
        self.session.begin_run()
        try:
            result = await self._call_evaluator(self.session.snapshot())
            self.session.checklist.apply_verdicts(result.verdicts)
            return result
        finally:
            self.session.end_run()

    # -- internals ---------------------------------------------------------

    async def _run(self, run: ImprovementRun, category: Optional[int],
                   on_update: Optional[UpdateCallback],
                   cancel: Optional[asyncio.Event]) -> None:
        self._enter(PHASE_SELECTING)
        if category is None:
            run.categories = categories_needing_improvement(self.session.checklist, self.rubric)
        else:
            run.categories = [category]
        if not run.categories:
            logger.info("Session %s: no category has open hints", self.session.session_id)
            return

        working = self.session.snapshot()

        for ci in run.categories:
            if cancel is not None and cancel.is_set():
                run.cancelled = True
                break
            self._enter(PHASE_EXTRACTING)
            hints = extract_hints(self.rubric[ci], self.session.checklist, ci)
            if not hints:
                logger.info("Category %d has no hints, skipping", ci)
                run.skipped_categories.append(ci)
                continue

            for section in self.section_map.get(ci, ()):
                if cancel is not None and cancel.is_set():
                    run.cancelled = True
                    break
                self._enter(PHASE_REGENERATING)
                result = await self._regenerate_section(
                    section, working[section], hints, on_update, cancel,
                )
                run.units.append((ci, result))
                if result.content.strip():
                    working[section] = result.content
                if result.status == "failed":
                    logger.warning("Category %d section %s failed, continuing: %s",
                                   ci, section, result.error)
                elif result.status == "cancelled":
                    run.cancelled = True
                    break
            if run.cancelled:
                break

        if run.cancelled or not run.units:
            return

        self._enter(PHASE_REEVALUATING)
        run.evaluation = await self._call_evaluator(working)
        self.session.checklist.apply_verdicts(run.evaluation.verdicts)

    async def _regenerate_section(self, section: str, current: str, hints: List[str],
                                  on_update: Optional[UpdateCallback],
                                  cancel: Optional[asyncio.Event]) -> RegenerationResult:
        session = self.session

        def publish(key: str, text: str) -> None:
            session.sections[key] = text
            if on_update is not None:
                on_update(key, text)

        session.lock_section(section)
        self._enter(PHASE_AWAITING)
        try:
            try:
                fragments = self._regenerate(
                    section, session.metadata, session.reference_text, current, hints,
                )
            except Exception as exc:
                logger.error("Could not start regeneration of %s: %s", section, exc,
                             exc_info=True)
                return RegenerationResult(section, "", "failed", error=str(exc))
            result = await accumulate(section, fragments, publish, cancel)
        finally:
            session.unlock_section(section)

        # Nothing usable streamed: the section keeps its previous text
        if not result.content.strip():
            session.sections[section] = current
        return result

    async def _call_evaluator(self, narrative: Dict[str, str]) -> EvaluationResult:
        try:
            result = await self._evaluate(dict(narrative), self.session.metadata, self.rubric)
        except Exception as exc:
            logger.error("Evaluator raised: %s", exc, exc_info=True)
            return EvaluationResult(status="backend_error", error=str(exc))
        if isinstance(result, EvaluationResult):
            return result
        return EvaluationResult(status="ok", verdicts=dict(result or {}))
