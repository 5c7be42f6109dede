#!/usr/bin/env python3
"""Checklist evaluator: judge narrative sections against the rubric.

Builds a single prompt holding every non-empty section (labelled by key)
and the flattened rubric (``"{ci}_{ii} [{category}] {criterion}"`` lines),
sends it to the ``checklist_evaluation`` route and parses the JSON array
``[{"key": "0_0", "ok": true, "why": "..."}]`` out of the reply.

The evaluator never mutates session state and never raises for backend
or parse problems: those degrade to an empty verdict mapping with a
status the caller can report. Applying verdicts is the caller's job.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional

from grantkit.checklist.rubric import CHECKLIST, iter_criteria
from grantkit.checklist.state import CriterionKey, Verdict
from grantkit.drafting.sections import ProjectMetadata

logger = logging.getLogger("grantkit.checklist.evaluator")

EVALUATION_MAX_TOKENS = 1024

Backend = Callable[[str], Awaitable[str]]

MESSAGES = {
    "ok": "체크리스트 분석이 완료되었습니다.",
    "empty_input": "작성된 섹션이 없어 분석을 건너뛰었습니다.",
    "backend_error": "분석 중 오류가 발생했습니다.",
    "malformed": "분석 결과를 해석할 수 없습니다.",
}


@dataclass
class EvaluationResult:
    """Outcome of one evaluation call.

    status: ok | empty_input | backend_error | malformed
    """
    status: str
    verdicts: Dict[CriterionKey, Verdict] = field(default_factory=dict)
    ignored: int = 0
    error: Optional[str] = None

    @property
    def message(self) -> str:
        return MESSAGES[self.status]

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "message": self.message,
            "verdict_count": len(self.verdicts),
            "ignored": self.ignored,
            "error": self.error,
        }


def narrative_text(narrative: Dict[str, str]) -> str:
    """Join non-empty sections as ``[key]\\ntext`` blocks."""
    return "\n\n".join(
        f"[{key}]\n{text}"
        for key, text in narrative.items()
        if text and text.strip()
    )


def build_prompt(narrative: Dict[str, str], metadata: ProjectMetadata,
                 rubric=CHECKLIST) -> str:
    items_text = "\n".join(
        f"{CriterionKey(ci, ii).token} [{category.name}] {criterion}"
        for ci, ii, category, criterion in iter_criteria(rubric)
    )
    return f"""다음은 사회복지공동모금회 배분사업 사업계획서입니다.

사업명: {metadata.project_name or '(미입력)'}
수행기관: {metadata.agency_name or '(미입력)'}

--- 사업계획서 내용 ---
{narrative_text(narrative)}

--- 체크리스트 ---
{items_text}

각 체크리스트 항목이 사업계획서에 충족되어 있는지 분석하고, 아래 JSON 형식으로만 응답해주세요. 다른 텍스트는 절대 포함하지 마세요.

[{{"key":"0_0","ok":true,"why":"이유를 한 줄로 간결하게"}}]

- ok: 충족이면 true, 미충족이면 false
- why: 충족 근거(true일 때) 또는 보완 방법(false일 때)을 15자 이내로"""


def parse_verdicts(raw: str, rubric=CHECKLIST):
    """Extract verdicts from a model reply.

    Returns ``(verdicts, ignored)`` or ``None`` when the reply holds no
    parseable JSON array. Entries with an unknown key or a non-boolean
    ``ok`` are skipped and counted in ``ignored``.
    """
    start = raw.find("[")
    end = raw.rfind("]") + 1
    if start < 0 or end <= start:
        return None
    try:
        items = json.loads(raw[start:end])
    except (json.JSONDecodeError, ValueError):
        return None
    if not isinstance(items, list):
        return None

    verdicts: Dict[CriterionKey, Verdict] = {}
    ignored = 0
    for item in items:
        if not isinstance(item, dict):
            ignored += 1
            continue
        key = CriterionKey.parse(item.get("key"))
        ok = item.get("ok")
        if key is None or not key.exists_in(rubric) or not isinstance(ok, bool):
            ignored += 1
            continue
        why = item.get("why")
        verdicts[key] = Verdict(checked=ok, reason=why.strip() if isinstance(why, str) else "")
    return verdicts, ignored


async def _default_backend(prompt: str) -> str:
    from grantkit.drafting import llm_bridge
    return await llm_bridge.complete(
        prompt, function="checklist_evaluation", max_tokens=EVALUATION_MAX_TOKENS,
    )


async def run_evaluation(narrative: Dict[str, str], metadata: ProjectMetadata,
                         rubric=CHECKLIST, backend: Optional[Backend] = None) -> EvaluationResult:
    """Evaluate ``narrative`` and report how it went."""
    if not any(text and text.strip() for text in narrative.values()):
        return EvaluationResult(status="empty_input")

    backend = backend or _default_backend
    prompt = build_prompt(narrative, metadata, rubric)
    try:
        raw = await backend(prompt)
    except Exception as exc:
        logger.error("Checklist evaluation failed: %s", exc, exc_info=True)
        return EvaluationResult(status="backend_error", error=str(exc))

    parsed = parse_verdicts((raw or "").strip(), rubric)
    if parsed is None:
        logger.warning("Evaluator reply held no JSON array (%d chars)", len(raw or ""))
        return EvaluationResult(status="malformed")

    verdicts, ignored = parsed
    if ignored:
        logger.warning("Ignored %d evaluator entries with unknown keys or bad fields", ignored)
    logger.info("Evaluator returned %d verdicts", len(verdicts))
    return EvaluationResult(status="ok", verdicts=verdicts, ignored=ignored)


async def evaluate(narrative: Dict[str, str], metadata: ProjectMetadata,
                   rubric=CHECKLIST, backend: Optional[Backend] = None) -> Dict[CriterionKey, Verdict]:
    """Return ``{CriterionKey: Verdict}``; empty on empty input or any failure."""
    result = await run_evaluation(narrative, metadata, rubric, backend)
    return result.verdicts
