"""Append-only audit trail.

Modules:
    audit_logger — structured audit events (LLM calls, runs, exports)
"""
