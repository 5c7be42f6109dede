#!/usr/bin/env python3
"""Improvement hints: unmet, evaluator-flagged criteria as rewrite targets.

Only criteria the evaluator judged unmet (``auto=True, checked=False``)
become hints. Never-evaluated criteria and manual unchecks are left alone.
"""

from typing import Dict, List, Sequence

from grantkit.checklist.rubric import CATEGORY_SECTIONS, CHECKLIST, RubricCategory
from grantkit.checklist.state import ChecklistState, CriterionKey


def extract_hints(category: RubricCategory, state: ChecklistState, ci: int) -> List[str]:
    """Literal criterion texts of category ``ci`` that need an AI fix."""
    hints = []
    for ii, criterion in enumerate(category.criteria):
        status = state.get(CriterionKey(ci, ii))
        if status is not None and status.auto and not status.checked:
            hints.append(criterion)
    return hints


def categories_needing_improvement(state: ChecklistState, rubric=CHECKLIST) -> List[int]:
    """Category indexes, in rubric order, with at least one hint."""
    return [ci for ci, category in enumerate(rubric) if extract_hints(category, state, ci)]


def hints_by_section(state: ChecklistState, categories: Sequence[int], rubric=CHECKLIST,
                     section_map: Dict[int, Sequence[str]] = None) -> Dict[str, List[str]]:
    """Union of hints per section across ``categories``, first-seen order."""
    section_map = CATEGORY_SECTIONS if section_map is None else section_map
    merged: Dict[str, List[str]] = {}
    for ci in categories:
        hints = extract_hints(rubric[ci], state, ci)
        for section in section_map.get(ci, ()):
            bucket = merged.setdefault(section, [])
            bucket.extend(h for h in hints if h not in bucket)
    return merged
