"""Expert review checklist.

Modules:
    rubric     — the 7-category rubric and category→section map
    state      — criterion keys, verdicts, checklist state and score
    evaluator  — LLM-backed rubric evaluation of narrative sections
    hints      — unmet evaluator-flagged criteria as rewrite targets
"""
