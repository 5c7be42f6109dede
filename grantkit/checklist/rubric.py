#!/usr/bin/env python3
"""Expert review checklist for community-chest distribution proposals.

The rubric is a fixed, ordered catalogue: category index ``ci`` and
criterion index ``ii`` are positional and never reorder at runtime, so
``(ci, ii)`` is a stable criterion identity across evaluation runs.

CATEGORY_SECTIONS maps each category to the narrative sections whose text
decides whether that category is satisfied, in regeneration order.
"""

from dataclasses import dataclass
from typing import Dict, Iterator, Tuple

from grantkit.drafting.sections import SECTION_KEYS


@dataclass(frozen=True)
class RubricCategory:
    """One checklist category with its ordered criteria."""
    name: str
    criteria: Tuple[str, ...]

    def __post_init__(self):
        # Accept any sequence, store immutably
        object.__setattr__(self, "criteria", tuple(self.criteria))


CHECKLIST = (
    RubricCategory("사업 필요성", (
        "문제 현황을 국내외 통계와 수치 근거로 제시했는가",
        "'있을 것으로 예상된다' 등 추정 표현 대신 근거 자료(출처)를 명시했는가",
        "지역사회 실태와 기존 서비스의 한계를 구체적으로 기술했는가",
        "기관의 특화 역량과 기존 서비스와의 차별성을 제시했는가",
    )),
    RubricCategory("목적 및 목표", (
        "최종 목적과 사업 목적이 구분되어 명확하게 제시되었는가",
        "성과목표에 수치 목표치(%)가 명시되어 있는가",
        "성과목표별 측정 도구(척도명)가 명시되어 있는가",
        "산출목표에 투입 규모·횟수·인원이 제시되어 있는가",
    )),
    RubricCategory("사업 내용", (
        "대상자 모집 방법과 선정 기준이 구체적인가",
        "세부 프로그램이 단계별 또는 회기별로 구체적으로 서술되었는가",
        "전문인력 구성과 역할이 명시되어 있는가",
        "협력기관이 있을 경우 역할 분담이 제시되어 있는가",
    )),
    RubricCategory("추진 일정", (
        "준비·실행·마무리 단계별 일정이 제시되었는가",
        "월별 주요 활동이 표 형식으로 정리되어 있는가",
        "사전·중간·사후 성과 측정 시점이 명확한가",
    )),
    RubricCategory("예산 계획", (
        "모든 예산 항목에 산출근거(단가 × 수량 = 금액)가 포함되었는가",
        "인건비 단가 기준(생활임금 또는 호봉표)이 명시되었는가",
        "예비비가 총액의 10% 이내로 편성되었는가",
        "예산 합계가 신청 금액과 일치하는가",
    )),
    RubricCategory("평가 계획", (
        "성과목표와 평가 지표가 일대일로 연결되어 있는가",
        "정량 평가의 측정 시점(사전·중간·사후)이 구체적인가",
        "정성 평가 방법(관찰 기록, 면담, 소감문 등)이 제시되었는가",
        "평가 결과 활용 방안이 제시되었는가",
    )),
    RubricCategory("기대 효과 및 지속가능성", (
        "참여자 차원의 기대 효과가 수치화되어 있는가",
        "지역사회 파급 효과와 확산 가능성이 제시되었는가",
        "사업 종료 후 자체 운영·연계 등 지속 가능성 계획이 있는가",
    )),
)

# Goal statements and evaluation indicators must line up, so the
# objectives category also drives the evaluation section.
CATEGORY_SECTIONS: Dict[int, Tuple[str, ...]] = {
    0: ("necessity",),
    1: ("objectives", "evaluation"),
    2: ("content",),
    3: ("schedule",),
    4: ("budget",),
    5: ("evaluation",),
    6: ("effects",),
}


def iter_criteria(rubric=CHECKLIST) -> Iterator[Tuple[int, int, RubricCategory, str]]:
    """Yield ``(ci, ii, category, criterion)`` in rubric order."""
    for ci, category in enumerate(rubric):
        for ii, criterion in enumerate(category.criteria):
            yield ci, ii, category, criterion


def total_criteria(rubric=CHECKLIST) -> int:
    return sum(len(c.criteria) for c in rubric)


def validate_category_map(rubric=CHECKLIST, section_map=None) -> None:
    """Raise ValueError if ``section_map`` does not fit ``rubric``."""
    section_map = CATEGORY_SECTIONS if section_map is None else section_map
    for ci, sections in section_map.items():
        if not 0 <= ci < len(rubric):
            raise ValueError(f"Category index {ci} outside rubric of {len(rubric)}")
        for key in sections:
            if key not in SECTION_KEYS:
                raise ValueError(f"Category {ci} maps to unknown section '{key}'")


def rubric_from_dicts(items) -> Tuple[RubricCategory, ...]:
    """Build a rubric from ``[{"category": str, "items": [str, ...]}, ...]``.

    This is the wire shape used by the stateless check endpoint.
    """
    if not isinstance(items, list):
        raise ValueError("checklistData must be a list")
    rubric = []
    for entry in items:
        if not isinstance(entry, dict):
            raise ValueError("checklistData entries must be objects")
        criteria = entry.get("items", [])
        if not isinstance(criteria, list):
            raise ValueError("checklistData items must be a list")
        rubric.append(RubricCategory(str(entry.get("category", "")),
                                     tuple(str(c) for c in criteria)))
    return tuple(rubric)


def rubric_to_dicts(rubric=CHECKLIST) -> list:
    return [{"category": c.name, "items": list(c.criteria)} for c in rubric]
