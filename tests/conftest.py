#!/usr/bin/env python3
"""Shared test fixtures for the GrantKit test suite."""

import asyncio
import copy
import json
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from types import SimpleNamespace

import pytest

# Add project root to path
BASE_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(BASE_DIR))

from grantkit.checklist.state import CriterionKey, Verdict  # noqa: E402
from grantkit.drafting import llm_bridge  # noqa: E402
from grantkit.drafting.sections import ProjectMetadata  # noqa: E402
from grantkit.drafting.session import DraftSession  # noqa: E402
from grantkit.llm.provider import LLMProvider, LLMResponse  # noqa: E402
from grantkit.llm.router import LLMRouter  # noqa: E402


# =========================================================================
# FAKE LLM BACKENDS
# =========================================================================
class FakeProvider(LLMProvider):
    """In-process provider: canned reply for invoke, canned fragments for astream.

    ``fail`` makes every call raise before output; ``fail_after`` makes
    astream raise after that many fragments; ``delay`` sleeps before the
    first fragment.
    """

    def __init__(self, reply="", fragments=None, fail=False, fail_after=None,
                 delay=0.0, label="fake"):
        self.reply = reply
        self.fragments = list(fragments or [])
        self.fail = fail
        self.fail_after = fail_after
        self.delay = delay
        self.label = label
        self.requests = []
        self.stream_closed = False

    @property
    def provider_name(self):
        return self.label

    def invoke(self, request, model_id, model_config):
        self.requests.append(request)
        if self.fail:
            raise RuntimeError(f"{self.label} is down")
        return LLMResponse(content=self.reply, model_id=model_id, provider=self.label)

    async def astream(self, request, model_id, model_config):
        self.requests.append(request)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail:
                raise RuntimeError(f"{self.label} is down")
            for i, fragment in enumerate(self.fragments):
                if self.fail_after is not None and i >= self.fail_after:
                    raise RuntimeError(f"{self.label} dropped the stream")
                yield {"type": "text", "text": fragment}
            yield {"type": "message_stop", "model_id": model_id}
        finally:
            self.stream_closed = True

    def check_availability(self, model_id):
        return not self.fail


ROUTER_CONFIG = {
    "providers": {
        "primary": {"type": "fake"},
        "backup": {"type": "fake"},
    },
    "models": {
        "primary-model": {"provider": "primary", "model_id": "primary-1", "max_tokens": 2048},
        "backup-model": {"provider": "backup", "model_id": "backup-1", "max_tokens": 512},
    },
    "routing": {
        "default": {"chain": ["primary-model", "backup-model"]},
        "section_generation": {"chain": ["primary-model", "backup-model"]},
        "checklist_evaluation": {"chain": ["primary-model", "backup-model"]},
    },
    "settings": {"request_timeout_seconds": 5},
}


def make_router(primary, backup=None, timeout=None):
    """LLMRouter over fake providers; unregistered providers are skipped."""
    config = copy.deepcopy(ROUTER_CONFIG)
    if timeout is not None:
        config["settings"]["request_timeout_seconds"] = timeout
    router = LLMRouter(config=config)
    router.register_provider("primary", primary)
    if backup is not None:
        router.register_provider("backup", backup)
    return router


class _MessagesHandler(BaseHTTPRequestHandler):
    """Minimal Anthropic Messages endpoint: JSON reply or SSE stream."""

    def do_POST(self):
        length = int(self.headers.get("Content-Length") or 0)
        body = json.loads(self.rfile.read(length) or b"{}")
        self.server.bodies.append(body)
        if body.get("stream"):
            payload = "".join(
                f"event: {event['type']}\ndata: {json.dumps(event)}\n\n"
                for event in _sse_events(body["model"], self.server.fragments)
            ).encode("utf-8")
            content_type = "text/event-stream"
        else:
            payload = json.dumps(_message(body["model"], self.server.reply)).encode("utf-8")
            content_type = "application/json"
        self.send_response(200)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, format, *args):
        pass


def _message(model, text, content=True):
    return {
        "id": "msg_stub",
        "type": "message",
        "role": "assistant",
        "model": model,
        "content": [{"type": "text", "text": text}] if content else [],
        "stop_reason": "end_turn" if content else None,
        "stop_sequence": None,
        "usage": {"input_tokens": 12, "output_tokens": 3 if content else 0},
    }


def _sse_events(model, fragments):
    yield {"type": "message_start", "message": _message(model, "", content=False)}
    yield {"type": "content_block_start", "index": 0,
           "content_block": {"type": "text", "text": ""}}
    for fragment in fragments:
        yield {"type": "content_block_delta", "index": 0,
               "delta": {"type": "text_delta", "text": fragment}}
    yield {"type": "content_block_stop", "index": 0}
    yield {"type": "message_delta", "delta": {"stop_reason": "end_turn", "stop_sequence": None},
           "usage": {"output_tokens": len(fragments)}}
    yield {"type": "message_stop"}


@pytest.fixture
def anthropic_stub(monkeypatch):
    """Local HTTP server speaking the Messages API; yields the server.

    Set ``reply`` / ``fragments`` on it; request bodies land in ``bodies``.
    """
    for var in ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY",
                "http_proxy", "https_proxy", "all_proxy"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("NO_PROXY", "127.0.0.1,localhost")

    server = ThreadingHTTPServer(("127.0.0.1", 0), _MessagesHandler)
    server.bodies = []
    server.reply = "[]"
    server.fragments = []
    server.base_url = f"http://127.0.0.1:{server.server_address[1]}"
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def install_router():
    """Install a router into the LLM bridge; restored after the test."""
    def _install(primary, backup=None, timeout=None):
        router = make_router(primary, backup, timeout)
        llm_bridge.set_router(router)
        return router
    yield _install
    llm_bridge.set_router(None)


# =========================================================================
# SCRIPTED ORCHESTRATOR COLLABORATORS
# =========================================================================
class ScriptedRegenerator:
    """Stands in for regenerate(): records calls and streams scripted output.

    ``scripts`` maps section → list of fragments; an Exception instance in
    the list is raised at that point. Unscripted sections stream
    ``"<section> v<n>"`` where n counts calls for that section.
    ``on_stream(section)`` runs once the stream is being consumed.
    """

    def __init__(self, scripts=None, on_stream=None):
        self.scripts = scripts or {}
        self.on_stream = on_stream
        self.calls = []
        self._counts = {}

    def __call__(self, section, metadata, reference_text, current_content, hints):
        self._counts[section] = self._counts.get(section, 0) + 1
        self.calls.append(SimpleNamespace(
            section=section,
            metadata=metadata,
            reference_text=reference_text,
            current_content=current_content,
            hints=list(hints or []),
        ))
        script = self.scripts.get(section)
        if script is None:
            script = [f"{section} v{self._counts[section]}"]
        return self._stream(section, list(script))

    async def _stream(self, section, script):
        if self.on_stream is not None:
            self.on_stream(section)
        for item in script:
            if isinstance(item, Exception):
                raise item
            yield item

    @property
    def sections(self):
        return [c.section for c in self.calls]


class ScriptedEvaluator:
    """Stands in for run_evaluation(): records narratives, returns ``result``."""

    def __init__(self, result=None):
        self.result = {} if result is None else result
        self.calls = []

    async def __call__(self, narrative, metadata, rubric):
        self.calls.append(dict(narrative))
        return self.result


def flag_unmet(session, *tokens):
    """Record evaluator verdicts of 'unmet' for the given ``ci_ii`` tokens."""
    session.checklist.apply_verdicts({
        CriterionKey.parse(t): Verdict(checked=False, reason="보완 필요") for t in tokens
    })


# =========================================================================
# SAMPLE DATA
# =========================================================================
@pytest.fixture
def sample_metadata():
    return ProjectMetadata(
        agency_name="행복나눔복지관",
        manager_name="김담당",
        project_name="독거노인 사회관계망 회복 프로젝트",
        project_type="성과중심형",
        region="서울 마포구",
        start_date="2026-03-01",
        end_date="2026-12-31",
        budget_total="30,000,000",
        target="독거노인",
        target_count="40명",
        key_outcome="사회적 고립감 20% 감소",
    )


@pytest.fixture
def sample_sections():
    return {
        "necessity": (
            "마포구 독거노인 비율은 최근 5년간 꾸준히 증가하고 있으며 "
            "지역 내 고립 위험군이 다수 확인되어 사회관계망 회복 지원이 시급하다."
        ),
        "objectives": "참여자의 사회적 고립감을 낮춘다.",
        "content": "",
        "schedule": "",
        "budget": (
            "인건비 12,000,000원(담당자 1명), 프로그램비 15,000,000원(회기별 운영), "
            "예비비 3,000,000원(총액의 10%)"
        ),
        "evaluation": "사전·사후 설문을 실시한다.",
        "effects": "",
    }


@pytest.fixture
def draft_session(sample_metadata, sample_sections):
    session = DraftSession(metadata=sample_metadata)
    session.sections.update(sample_sections)
    return session


# =========================================================================
# FLASK
# =========================================================================
@pytest.fixture
def app_module(monkeypatch):
    from grantkit.dashboard import app as module
    from grantkit.drafting.session import SessionStore
    monkeypatch.setattr(module, "SESSIONS", SessionStore())
    monkeypatch.setattr(module, "_API_KEY", "")
    module.app.config["TESTING"] = True
    return module


@pytest.fixture
def client(app_module):
    with app_module.app.test_client() as client:
        yield client
