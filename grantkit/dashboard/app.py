#!/usr/bin/env python3
"""GrantKit Dashboard API — Flask backend for the proposal drafting workbench.

Routes:
    /api/health                                   — liveness + configured LLM functions
    /api/sessions                                 — create draft session (POST)
    /api/sessions/<id>                            — session state (GET)
    /api/sessions/<id>/metadata                   — update project metadata (PUT)
    /api/sessions/<id>/sections/<key>             — edit one section (PUT)
    /api/sessions/<id>/reference                  — set reference text (PUT)
    /api/sessions/<id>/checklist/<ci>/<ii>/toggle — manual checklist toggle (POST)
    /api/sessions/<id>/evaluate                   — run checklist evaluation (POST)
    /api/sessions/<id>/improve                    — AI improvement run (POST)
    /api/extract                                  — reference document upload (POST multipart)
    /api/generate                                 — streamed section generation (POST)
    /api/check                                    — stateless checklist evaluation (POST)
    /api/export                                   — .docx download (POST)

Usage:
    python -m grantkit.dashboard.app [--port 5001] [--debug]
"""

import asyncio
import io
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request, send_file

BASE_DIR = Path(__file__).resolve().parent.parent.parent

# Real environment variables win over .env
_env_path = BASE_DIR / ".env"
if _env_path.exists():
    load_dotenv(_env_path, override=False)

from grantkit import __version__  # noqa: E402
from grantkit.audit.audit_logger import log_event  # noqa: E402
from grantkit.checklist.evaluator import run_evaluation  # noqa: E402
from grantkit.checklist.rubric import CHECKLIST, rubric_from_dicts, rubric_to_dicts  # noqa: E402
from grantkit.checklist.state import CriterionKey, verdicts_to_results  # noqa: E402
from grantkit.documents.extractor import (  # noqa: E402
    MAX_UPLOAD_BYTES,
    ExtractionError,
    ExtractionFailedError,
    FileTooLargeError,
    UnsupportedFormatError,
    extract_text,
)
from grantkit.drafting import llm_bridge  # noqa: E402
from grantkit.drafting.llm_bridge import LLMUnavailableError  # noqa: E402
from grantkit.drafting.orchestrator import ImprovementOrchestrator  # noqa: E402
from grantkit.drafting.regenerator import regenerate  # noqa: E402
from grantkit.drafting.sections import (  # noqa: E402
    SECTION_KEYS,
    SECTION_LABELS,
    ProjectMetadata,
    validate_section_key,
)
from grantkit.drafting.session import (  # noqa: E402
    ImprovementInProgressError,
    SectionLockedError,
    SessionStore,
)
from grantkit.production.exporter import DOCX_MIME, build_proposal_docx, export_filename  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger("grantkit.dashboard")


# =========================================================================
# APP SETUP
# =========================================================================
app = Flask(__name__)
app.secret_key = os.environ.get("GRANTKIT_SECRET", "dev-secret-change-in-prod")
# Multipart framing overhead on top of the file ceiling
app.config["MAX_CONTENT_LENGTH"] = MAX_UPLOAD_BYTES + 1024 * 1024

SESSIONS = SessionStore()

EXTRACTION_STATUS = {
    UnsupportedFormatError: 415,
    FileTooLargeError: 413,
    ExtractionFailedError: 422,
}


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object.")
    return data


def _get_session_or_404(session_id):
    session = SESSIONS.get(session_id)
    if session is None:
        return None, (jsonify({"error": f"Session '{session_id}' not found"}), 404)
    return session, None


def _iter_async(agen):
    """Drive an async generator from synchronous WSGI code.

    Runs on a private event loop; closing the returned generator (client
    disconnect) closes ``agen`` and with it the provider stream.
    """
    loop = asyncio.new_event_loop()
    try:
        while True:
            try:
                yield loop.run_until_complete(agen.__anext__())
            except StopAsyncIteration:
                break
    finally:
        loop.run_until_complete(agen.aclose())
        loop.close()


# =========================================================================
# ERROR HANDLERS
# =========================================================================
@app.errorhandler(404)
def not_found(e):
    return jsonify({"error": "Not found"}), 404


@app.errorhandler(413)
def payload_too_large(e):
    return jsonify({"error": FileTooLargeError.message}), 413


@app.errorhandler(500)
def internal_server_error(e):
    logger.error("500 Internal Server Error: %s", e)
    return jsonify({"error": "Internal server error"}), 500


# =========================================================================
# AUTH (before_request)
# =========================================================================
_API_KEY = os.environ.get("GRANTKIT_API_KEY", "").strip()


@app.before_request
def _before_request():
    # Optional API key auth for /api/* routes
    if _API_KEY and request.path.startswith("/api/"):
        provided = (
            request.headers.get("X-Api-Key", "")
            or request.args.get("api_key", "")
        )
        if provided != _API_KEY:
            return jsonify({"error": "Unauthorized. Provide X-Api-Key header."}), 401


# =========================================================================
# ROUTES: health
# =========================================================================
@app.route("/api/health")
def api_health():
    return jsonify({
        "status": "ok",
        "version": __version__,
        "llm_functions": llm_bridge.configured_functions(),
        "request_timeout_seconds": llm_bridge.request_timeout(),
        "sessions": len(SESSIONS),
        "sections": [{"key": k, "label": SECTION_LABELS[k]} for k in SECTION_KEYS],
        "checklist": rubric_to_dicts(CHECKLIST),
    })


# =========================================================================
# ROUTES: sessions
# =========================================================================
@app.route("/api/sessions", methods=["POST"])
def api_create_session():
    try:
        data = _json_body()
        session = SESSIONS.create(data.get("formData") or data.get("metadata") or {})
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    logger.info("Created session %s", session.session_id)
    return jsonify(session.to_dict()), 201


@app.route("/api/sessions/<session_id>")
def api_get_session(session_id):
    session, err = _get_session_or_404(session_id)
    if err:
        return err
    return jsonify(session.to_dict())


@app.route("/api/sessions/<session_id>/metadata", methods=["PUT"])
def api_update_metadata(session_id):
    session, err = _get_session_or_404(session_id)
    if err:
        return err
    try:
        session.metadata.update(_json_body())
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"metadata": session.metadata.to_dict(), "progress": session.progress()})


@app.route("/api/sessions/<session_id>/sections/<key>", methods=["PUT"])
def api_update_section(session_id, key):
    session, err = _get_session_or_404(session_id)
    if err:
        return err
    try:
        text = _json_body().get("text", "")
        if not isinstance(text, str):
            raise ValueError("text must be a string")
        session.set_section(key, text)
    except SectionLockedError as e:
        return jsonify({"error": str(e)}), 409
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"section": key, "chars": len(text), "progress": session.progress()})


@app.route("/api/sessions/<session_id>/reference", methods=["PUT"])
def api_update_reference(session_id):
    session, err = _get_session_or_404(session_id)
    if err:
        return err
    try:
        text = _json_body().get("text", "")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if not isinstance(text, str):
        return jsonify({"error": "text must be a string"}), 400
    session.reference_text = text.strip()
    return jsonify({"reference_chars": len(session.reference_text)})


@app.route("/api/sessions/<session_id>/checklist/<int:ci>/<int:ii>/toggle", methods=["POST"])
def api_toggle_criterion(session_id, ci, ii):
    session, err = _get_session_or_404(session_id)
    if err:
        return err
    key = CriterionKey(ci, ii)
    if not key.exists_in(CHECKLIST):
        return jsonify({"error": f"Unknown checklist item {key.token}"}), 404
    status = session.checklist.toggle(key)
    return jsonify({
        "key": key.token,
        "status": status.to_dict(),
        "score": session.checklist.score(CHECKLIST),
    })


@app.route("/api/sessions/<session_id>/evaluate", methods=["POST"])
def api_evaluate_session(session_id):
    session, err = _get_session_or_404(session_id)
    if err:
        return err
    try:
        result = asyncio.run(ImprovementOrchestrator(session).reevaluate())
    except ImprovementInProgressError as e:
        return jsonify({"error": str(e)}), 409
    log_event("checklist.evaluate", "dashboard", result.status,
              session_id=session.session_id,
              metadata={"verdicts": len(result.verdicts), "ignored": result.ignored})
    body = {
        "evaluation": result.to_dict(),
        "results": verdicts_to_results(result.verdicts),
        "session": session.to_dict(),
    }
    return jsonify(body), 503 if result.status == "backend_error" else 200


@app.route("/api/sessions/<session_id>/improve", methods=["POST"])
def api_improve_session(session_id):
    session, err = _get_session_or_404(session_id)
    if err:
        return err
    try:
        category = _json_body().get("category")
        if category is not None and (isinstance(category, bool) or not isinstance(category, int)):
            raise ValueError("category must be an integer")
        run = asyncio.run(ImprovementOrchestrator(session).improve(category=category))
    except ImprovementInProgressError as e:
        return jsonify({"error": str(e)}), 409
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"run": run.to_dict(), "session": session.to_dict()})


# =========================================================================
# ROUTES: documents
# =========================================================================
@app.route("/api/extract", methods=["POST"])
def api_extract():
    """Extract reference text from an uploaded PDF/DOCX/TXT (multipart)."""
    if "file" not in request.files:
        return jsonify({"error": "파일이 없습니다."}), 400
    upload = request.files["file"]
    session_id = request.form.get("session_id") or None
    session = None
    if session_id:
        session, err = _get_session_or_404(session_id)
        if err:
            return err

    try:
        doc = extract_text(upload.read(), upload.filename or "", upload.mimetype or "")
    except ExtractionError as e:
        status = EXTRACTION_STATUS.get(type(e), 422)
        logger.warning("Extraction rejected %s: %s", upload.filename, e)
        return jsonify({"error": e.message, "detail": str(e)}), status

    if session is not None:
        session.reference_text = doc.text
    log_event("document.extract", "dashboard", "extracted",
              session_id=session_id or "",
              metadata={"filename": doc.filename, "file_hash": doc.file_hash,
                        "chars": len(doc.text)})
    return jsonify(doc.to_dict())


# =========================================================================
# ROUTES: stateless generation / check
# =========================================================================
@app.route("/api/generate", methods=["POST"])
def api_generate():
    """Stream one section as text/plain chunks."""
    try:
        data = _json_body()
        section = validate_section_key(data.get("section", ""))
        metadata = ProjectMetadata.from_dict(data.get("formData") or {})
        reference_text = data.get("uploadedText") or ""
        current_content = data.get("currentContent") or ""
        if not isinstance(reference_text, str) or not isinstance(current_content, str):
            raise ValueError("uploadedText and currentContent must be strings")
        hints = data.get("hints") or None
        if hints is not None and (
            not isinstance(hints, list) or not all(isinstance(h, str) for h in hints)
        ):
            raise ValueError("hints must be a list of strings")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    fragments = regenerate(
        section,
        metadata,
        reference_text=reference_text,
        current_content=current_content,
        hints=hints,
    )
    chunks = _iter_async(fragments)
    try:
        first = next(chunks, "")
    except LLMUnavailableError as e:
        chunks.close()
        return jsonify({"error": "생성 중 오류가 발생했습니다.", "detail": str(e)}), 503

    def body():
        try:
            if first:
                yield first
            for chunk in chunks:
                yield chunk
        except LLMUnavailableError as e:
            # Headers are gone; the partial body stands
            logger.warning("Generation of %s aborted mid-stream: %s", section, e)
        finally:
            chunks.close()

    return Response(body(), mimetype="text/plain", headers={
        "X-Accel-Buffering": "no",
        "Cache-Control": "no-cache",
    })


@app.route("/api/check", methods=["POST"])
def api_check():
    """Evaluate posted sections without touching any session."""
    try:
        data = _json_body()
        sections = data.get("sections") or {}
        if not isinstance(sections, dict):
            raise ValueError("sections must be an object")
        metadata = ProjectMetadata.from_dict(data.get("formData") or {})
        rubric = rubric_from_dicts(data["checklistData"]) if data.get("checklistData") else CHECKLIST
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    narrative = {k: v for k, v in sections.items() if isinstance(v, str)}
    result = asyncio.run(run_evaluation(narrative, metadata, rubric))
    body = {"results": verdicts_to_results(result.verdicts), **result.to_dict()}
    if result.status == "backend_error":
        body["error"] = result.message
        return jsonify(body), 503
    return jsonify(body)


# =========================================================================
# ROUTES: export
# =========================================================================
@app.route("/api/export", methods=["POST"])
def api_export():
    """Render the proposal as .docx from a session or a posted payload."""
    try:
        data = _json_body()
        if data.get("session_id"):
            session, err = _get_session_or_404(data["session_id"])
            if err:
                return err
            metadata, sections = session.metadata, session.snapshot()
        else:
            metadata = ProjectMetadata.from_dict(data.get("formData") or {})
            sections = data.get("sections") or {}
            if not isinstance(sections, dict):
                raise ValueError("sections must be an object")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        payload = build_proposal_docx(metadata, {k: str(v or "") for k, v in sections.items()})
    except Exception as e:
        logger.error("Export failed: %s", e, exc_info=True)
        return jsonify({"error": "문서 생성 중 오류가 발생했습니다."}), 500

    filename = export_filename(metadata)
    log_event("proposal.export", "dashboard", "docx",
              session_id=data.get("session_id") or "",
              metadata={"filename": filename, "bytes": len(payload)})
    return send_file(io.BytesIO(payload), mimetype=DOCX_MIME,
                     as_attachment=True, download_name=filename)


# =========================================================================
# MAIN
# =========================================================================
def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description="GrantKit Dashboard API")
    parser.add_argument("--port", type=int, default=5001)
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--host", default="127.0.0.1")
    args = parser.parse_args(argv)

    print(f"GrantKit Dashboard starting on http://{args.host}:{args.port}")
    print(f"LLM functions: {', '.join(llm_bridge.configured_functions()) or '(none)'}")
    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == "__main__":
    sys.exit(main())
