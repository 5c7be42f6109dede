"""GrantKit — grant-proposal drafting workbench for community-chest funding.

Subpackages:
    llm         — provider abstraction and config-driven router
    checklist   — review rubric, checklist state, evaluator, hint extraction
    drafting    — section catalogue, LLM bridge, regenerator, sessions, orchestrator
    documents   — reference-document text extraction
    production  — Word (.docx) export
    audit       — append-only audit events
    dashboard   — Flask API
"""

__version__ = "0.4.0"
