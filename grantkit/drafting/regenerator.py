#!/usr/bin/env python3
"""Section regenerator: write or rewrite one narrative section by streaming.

``regenerate()`` builds the section prompt and returns the fragment stream
from the ``section_generation`` route. ``accumulate()`` consumes such a
stream: fragments are appended in arrival order, every intermediate text
is reported through ``on_update``, and a mid-stream failure keeps what
arrived so far instead of discarding it.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional, Sequence

from grantkit.drafting.llm_bridge import LLMUnavailableError
from grantkit.drafting.sections import (
    SECTION_INSTRUCTIONS,
    SYSTEM_PROMPT,
    ProjectMetadata,
    validate_section_key,
)

logger = logging.getLogger("grantkit.drafting.regenerator")

REFERENCE_TEXT_LIMIT = int(os.environ.get("GRANTKIT_REFERENCE_LIMIT", "3000"))
GENERATION_MAX_TOKENS = 2048

STATUS_MESSAGES = {
    "completed": "섹션 작성이 완료되었습니다.",
    "failed": "생성 중 오류가 발생했습니다. 작성된 부분까지 보존했습니다.",
    "cancelled": "생성이 중단되었습니다. 작성된 부분까지 보존했습니다.",
}


@dataclass
class RegenerationResult:
    """Outcome of consuming one section stream.

    status: completed | failed | cancelled
    """
    section: str
    content: str
    status: str
    fragments: int = 0
    error: Optional[str] = None

    @property
    def message(self) -> str:
        return STATUS_MESSAGES[self.status]

    def to_dict(self) -> dict:
        return {
            "section": self.section,
            "status": self.status,
            "message": self.message,
            "fragments": self.fragments,
            "chars": len(self.content),
            "error": self.error,
        }


def build_prompt(section: str, metadata: ProjectMetadata,
                 reference_text: Optional[str] = None,
                 current_content: str = "",
                 hints: Optional[Sequence[str]] = None) -> str:
    """Assemble the user prompt for ``section``."""
    validate_section_key(section)
    prompt = f"{metadata.prompt_block()}\n\n## 작성 지침\n{SECTION_INSTRUCTIONS[section]}\n"

    if reference_text and reference_text.strip():
        prompt += (
            "\n## 참고 자료 (업로드된 사업 소개 자료)\n"
            f"{reference_text[:REFERENCE_TEXT_LIMIT]}\n"
        )

    if hints:
        gaps = "\n".join(f"- {h}" for h in hints)
        prompt += (
            "\n## 전문가 체크리스트 미충족 항목 (반드시 보완하세요)\n"
            f"{gaps}\n"
        )

    if current_content and current_content.strip():
        prompt += f"\n## 기존 작성 내용 (이를 바탕으로 개선해 주세요)\n{current_content}\n"
        if hints:
            prompt += "\n위 내용을 유지하되 미충족 항목을 모두 충족하도록 개선해 주세요."
        else:
            prompt += "\n위 내용을 더 구체적이고 설득력 있게 개선해 주세요."
    else:
        prompt += "\n위 정보를 바탕으로 해당 섹션을 작성해 주세요."

    return prompt


def regenerate(section: str, metadata: ProjectMetadata,
               reference_text: Optional[str] = None,
               current_content: str = "",
               hints: Optional[Sequence[str]] = None,
               session_id: str = "") -> AsyncIterator[str]:
    """Return the finite, non-restartable fragment stream for ``section``."""
    from grantkit.drafting import llm_bridge

    prompt = build_prompt(section, metadata, reference_text, current_content, hints)
    return llm_bridge.stream(
        prompt,
        function="section_generation",
        system_prompt=SYSTEM_PROMPT,
        max_tokens=GENERATION_MAX_TOKENS,
        session_id=session_id,
    )


async def _read(iterator):
    return await iterator.__anext__()


async def _next_or_cancel(iterator, cancel: asyncio.Event):
    """Await the next fragment unless ``cancel`` fires first.

    Returns ``(fragment, False)``, or ``(None, True)`` when cancelled; the
    pending read is cancelled so a stalled backend cannot hold the caller.
    """
    step = asyncio.ensure_future(_read(iterator))
    stop = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({step, stop}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stop.cancel()
    if step.done():
        return step.result(), False
    step.cancel()
    await asyncio.wait({step})
    return None, True


async def accumulate(section: str, fragments: AsyncIterator[str],
                     on_update: Optional[Callable[[str, str], None]] = None,
                     cancel: Optional[asyncio.Event] = None) -> RegenerationResult:
    """Drain ``fragments`` into one string.

    ``on_update(section, text_so_far)`` fires after every fragment. Setting
    ``cancel`` stops at once, even while waiting on a stalled backend, and
    closes the stream. A fragment that lands together with the cancel is
    kept.
    """
    text = ""
    count = 0
    iterator = fragments.__aiter__()
    try:
        while True:
            if cancel is not None and cancel.is_set():
                return RegenerationResult(section, text, "cancelled", count)
            try:
                if cancel is None:
                    fragment = await iterator.__anext__()
                else:
                    fragment, cancelled = await _next_or_cancel(iterator, cancel)
                    if cancelled:
                        logger.info("Stream for %s cancelled after %d fragments", section, count)
                        return RegenerationResult(section, text, "cancelled", count)
            except StopAsyncIteration:
                break
            text += fragment
            count += 1
            if on_update is not None:
                on_update(section, text)
    except LLMUnavailableError as exc:
        logger.warning("Stream for %s aborted after %d fragments: %s", section, count, exc)
        return RegenerationResult(section, text, "failed", count, error=str(exc))
    except Exception as exc:
        logger.error("Stream for %s raised after %d fragments: %s", section, count, exc,
                     exc_info=True)
        return RegenerationResult(section, text, "failed", count, error=str(exc))
    finally:
        aclose = getattr(fragments, "aclose", None)
        if aclose is not None:
            await aclose()
    return RegenerationResult(section, text, "completed", count)
