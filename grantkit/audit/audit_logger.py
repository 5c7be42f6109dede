#!/usr/bin/env python3
"""Audit Logger — append-only audit trail writer for GrantKit.

Every LLM call, improvement run and export is recorded as one JSON line on
the ``grantkit.audit`` logger. Prompts and responses are never written
raw; callers pass SHA-256 digests via :func:`sha256`.

Drafts are not persisted, so the trail goes wherever logging is routed
(stderr by default, a file handler in deployments).
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from uuid import uuid4

logger = logging.getLogger("grantkit.audit")


def sha256(text: str) -> str:
    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()


def log_event(event_type: str, actor: str, action: str,
              session_id: str = "", metadata: dict = None) -> dict:
    """Append an event to the audit trail. Returns the entry."""
    entry = {
        "id": str(uuid4()),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type,
        "actor": actor,
        "action": action,
        "session_id": session_id,
        "metadata": metadata or {},
    }
    logger.info(json.dumps(entry, ensure_ascii=False, sort_keys=True))
    return entry
