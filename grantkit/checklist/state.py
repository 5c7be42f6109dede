#!/usr/bin/env python3
"""Checklist state: per-criterion status keyed by ``(ci, ii)``.

Keys are created lazily. An absent key means the criterion was never
evaluated and never touched; aggregate scores count it as unmet.

Only :meth:`ChecklistState.apply_verdicts` sets ``auto=True``. A manual
toggle always sets ``auto=False`` and clears the reason.
"""

import re
import threading
from dataclasses import dataclass
from typing import Dict, Iterator, NamedTuple, Optional

from grantkit.checklist.rubric import CHECKLIST, total_criteria

_KEY_RE = re.compile(r"^(\d+)_(\d+)$")

READY_THRESHOLD = 80
ALMOST_THRESHOLD = 60


class CriterionKey(NamedTuple):
    """Composite criterion identity: category index, item index."""
    ci: int
    ii: int

    @property
    def token(self) -> str:
        """Wire form ``"{ci}_{ii}"``."""
        return f"{self.ci}_{self.ii}"

    @classmethod
    def parse(cls, token) -> Optional["CriterionKey"]:
        """Parse ``"{ci}_{ii}"``; returns None for anything else."""
        if not isinstance(token, str):
            return None
        m = _KEY_RE.match(token.strip())
        if not m:
            return None
        return cls(int(m.group(1)), int(m.group(2)))

    def exists_in(self, rubric=CHECKLIST) -> bool:
        return 0 <= self.ci < len(rubric) and 0 <= self.ii < len(rubric[self.ci].criteria)


@dataclass(frozen=True)
class Verdict:
    """Evaluator judgement for one criterion."""
    checked: bool
    reason: str = ""


@dataclass
class CriterionStatus:
    checked: bool = False
    auto: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {"checked": self.checked, "auto": self.auto, "reason": self.reason}


class ChecklistState:
    """Mutable mapping CriterionKey -> CriterionStatus for one session.

    Writes and whole-state copies hold ``_lock``: an improvement run
    merges verdicts on its own thread while requests read the session.
    """

    def __init__(self):
        self._items: Dict[CriterionKey, CriterionStatus] = {}
        self._lock = threading.Lock()

    def __contains__(self, key) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[CriterionKey]:
        return iter(self._items)

    def get(self, key: CriterionKey) -> Optional[CriterionStatus]:
        return self._items.get(key)

    def items(self):
        with self._lock:
            return list(self._items.items())

    def toggle(self, key: CriterionKey) -> CriterionStatus:
        """Flip a criterion by hand."""
        current = self._items.get(key)
        return self.set_manual(key, not (current.checked if current else False))

    def set_manual(self, key: CriterionKey, checked: bool) -> CriterionStatus:
        status = CriterionStatus(checked=bool(checked), auto=False, reason=None)
        with self._lock:
            self._items[key] = status
        return status

    def apply_verdicts(self, verdicts: Dict[CriterionKey, Verdict]) -> int:
        """Merge evaluator verdicts by key; other keys keep their status.

        Evaluation always wins over a prior manual toggle. Returns the
        number of criteria written.
        """
        with self._lock:
            for key, verdict in verdicts.items():
                self._items[key] = CriterionStatus(
                    checked=verdict.checked, auto=True, reason=verdict.reason,
                )
        return len(verdicts)

    def score(self, rubric=CHECKLIST) -> dict:
        """Completion score over the whole rubric.

        Returns {done, total, percent, band, categories: [{name, done, total}]}.
        """
        total = total_criteria(rubric)
        categories = []
        done = 0
        for ci, category in enumerate(rubric):
            cat_done = sum(
                1 for ii in range(len(category.criteria))
                if self._is_checked(CriterionKey(ci, ii))
            )
            done += cat_done
            categories.append({
                "name": category.name,
                "done": cat_done,
                "total": len(category.criteria),
            })
        percent = round(done / total * 100) if total else 0
        if percent >= READY_THRESHOLD:
            band = "ready"
        elif percent >= ALMOST_THRESHOLD:
            band = "almost"
        else:
            band = "in_progress"
        return {
            "done": done,
            "total": total,
            "percent": percent,
            "band": band,
            "categories": categories,
        }

    def _is_checked(self, key: CriterionKey) -> bool:
        status = self._items.get(key)
        return bool(status and status.checked)

    def to_dict(self) -> dict:
        return {key.token: status.to_dict() for key, status in sorted(self.items())}

    def copy(self) -> "ChecklistState":
        clone = ChecklistState()
        clone._items = {
            k: CriterionStatus(v.checked, v.auto, v.reason) for k, v in self.items()
        }
        return clone


def verdicts_to_results(verdicts: Dict[CriterionKey, Verdict]) -> list:
    """Render verdicts in the ``[{key, ok, why}, ...]`` wire shape."""
    return [
        {"key": key.token, "ok": v.checked, "why": v.reason}
        for key, v in sorted(verdicts.items())
    ]

