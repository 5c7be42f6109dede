"""Narrative drafting.

Modules:
    sections      — section catalogue, prompts, project metadata
    llm_bridge    — router wrapper with request timeouts (complete/stream)
    regenerator   — streamed write/rewrite of one section
    session       — draft sessions and the in-memory session store
    orchestrator  — evaluate → hint → regenerate → re-evaluate loop
"""
