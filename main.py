from flask import Flask, Response, request, jsonify, send_file, stream_with_context
import os
import json
import logging
import tempfile
from io import BytesIO
from pathlib import Path
from dotenv import load_dotenv
from werkzeug.utils import secure_filename

# Load environment variables BEFORE importing services that read them
load_dotenv()

from redline.cache import review_cache, make_review_key
from redline.services import llm_client
from redline.services.clause_segmenter import split_into_clauses
from redline.services.doc_editor import apply_redlines
from redline.services.review_orchestrator import review_document, format_sse
from redline.services.settings_store import load_settings, save_settings
from redline.services.text_extractor import extract_text, SUPPORTED_SUFFIXES
from redline.utils.diff import SKIPPED, diff_tokens
from redline.utils.diff_render import (
    format_diff_html,
    format_diff_plain,
    format_diff_regions,
    render_regions_html,
)

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s'
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = os.getenv('SECRET_KEY', 'dev-secret-key')

# Review configuration
app.config['AI_PROVIDER'] = os.getenv('AI_PROVIDER', 'openai')
app.config['OPENAI_MODEL'] = os.getenv('OPENAI_MODEL', llm_client.DEFAULT_OPENAI_MODEL)
app.config['DIFF_MAX_CELLS'] = int(os.getenv('DIFF_MAX_CELLS', '120000'))
app.config['DIFF_SIGNIFICANCE_THRESHOLD'] = int(os.getenv('DIFF_SIGNIFICANCE_THRESHOLD', '10'))
app.config['REVIEW_CACHE_TTL'] = int(os.getenv('REVIEW_CACHE_TTL', '1800'))
app.config['STREAM_ISSUE_DELAY'] = float(os.getenv('STREAM_ISSUE_DELAY', '0.1'))
app.config['MAX_CONTENT_LENGTH'] = int(os.getenv('MAX_CONTENT_LENGTH', str(16 * 1024 * 1024)))
app.config['PORT'] = int(os.getenv('PORT', '8787'))

logger.info(
    f"Review server configured: provider={app.config['AI_PROVIDER']}, "
    f"diff budget={app.config['DIFF_MAX_CELLS']} cells"
)

DOCX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.wordprocessingml.document'


@app.after_request
def add_cors_headers(response):
    """Allow the add-in (served from another origin) to call the API"""
    response.headers['Access-Control-Allow-Origin'] = '*'
    response.headers['Access-Control-Allow-Headers'] = 'Content-Type, Authorization'
    response.headers['Access-Control-Allow-Methods'] = 'GET, POST, PUT, OPTIONS'
    return response


@app.before_request
def answer_preflight():
    if request.method == 'OPTIONS' and request.path.startswith('/api/'):
        return Response(status=204)


def _diff_payload(original: str, revised: str, max_cells: int = None, threshold: int = None) -> dict:
    """Plain and region-merged renderings of original vs revised."""
    if max_cells is None:
        max_cells = app.config['DIFF_MAX_CELLS']
    if threshold is None:
        threshold = app.config['DIFF_SIGNIFICANCE_THRESHOLD']

    segments = diff_tokens(original, revised, max_cells)
    regions = format_diff_regions(segments, threshold)
    return {
        'skipped': segments is SKIPPED,
        'segments': [] if segments is SKIPPED else [s.to_dict() for s in segments],
        'plain': format_diff_plain(segments),
        'regions': [] if isinstance(regions, str) else [r.to_dict() for r in regions],
        'html': render_regions_html(regions),
        'segmentsHtml': format_diff_html(segments),
    }


def _save_upload(file) -> Path:
    """Write an uploaded file to a temporary path keeping its extension"""
    suffix = Path(secure_filename(file.filename or '')).suffix.lower()
    temp_file = tempfile.NamedTemporaryFile(delete=False, suffix=suffix, prefix='contract_upload_')
    temp_path = Path(temp_file.name)
    file.save(temp_file)
    temp_file.close()
    return temp_path


def _cleanup(*paths):
    for path in paths:
        if not path:
            continue
        try:
            if Path(path).exists():
                Path(path).unlink()
        except OSError as e:
            logger.warning(f"Failed to clean up temporary file {path}: {e}")


@app.route('/health')
def health():
    return jsonify({'status': 'ok'})


@app.route('/api/review', methods=['POST'])
def review():
    """Review a single clause and return the revised text with comments"""
    body = request.get_json(silent=True) or {}
    text = body.get('text')
    instructions = body.get('instructions')
    risk_profile = body.get('riskProfile') or 'balanced'

    if not text or not isinstance(text, str):
        return jsonify({'error': 'Missing contract text.'}), 400

    cache_key = make_review_key(text, instructions, risk_profile)
    cached = review_cache.get(cache_key)
    if cached is not None:
        logger.debug("Serving clause review from cache")
        return jsonify(cached)

    try:
        result = llm_client.review_clause(text, instructions, risk_profile)
    except (ValueError, RuntimeError) as e:
        logger.error(f"Clause review failed: {e}")
        return jsonify({'error': str(e) or 'AI request failed.'}), 500
    except Exception as e:
        logger.exception(f"Unexpected error in review: {e}")
        return jsonify({'error': 'AI request failed.'}), 500

    revised = result.get('revisedText')
    if not isinstance(revised, str) or not revised:
        revised = text
    diff = _diff_payload(text, revised)
    result['diff'] = diff['plain']
    result['diffHtml'] = diff['html']

    review_cache.set(cache_key, result, ttl=app.config['REVIEW_CACHE_TTL'])
    return jsonify(result)


@app.route('/api/chat', methods=['POST'])
def chat():
    """Conversational help about the document or the current selection"""
    body = request.get_json(silent=True) or {}
    message = body.get('message')
    document_context = body.get('documentContext') or ''
    selection_context = body.get('selectionContext') or ''
    history = body.get('history') or []

    if not message or not isinstance(message, str):
        return jsonify({'error': 'Missing message.'}), 400

    if not isinstance(history, list):
        history = []
    if not isinstance(document_context, str):
        document_context = ''
    if not isinstance(selection_context, str):
        selection_context = ''

    try:
        result = llm_client.chat(message, document_context, selection_context, history)
    except (ValueError, RuntimeError) as e:
        logger.error(f"[/api/chat] Error: {e}")
        return jsonify({'error': str(e) or 'Chat request failed.'}), 500
    except Exception as e:
        logger.exception(f"[/api/chat] Unexpected error: {e}")
        return jsonify({'error': 'Chat request failed.'}), 500

    if isinstance(result.get('suggestion'), str) and result['suggestion'] and selection_context.strip():
        result['diffHtml'] = _diff_payload(selection_context, result['suggestion'])['html']

    return jsonify(result)


@app.route('/api/review-stream', methods=['GET', 'POST'])
def review_stream():
    """Stream clause-by-clause review events as server-sent events"""
    if request.method == 'POST':
        body = request.get_json(silent=True) or {}
    else:
        body = request.args

    text = body.get('text')
    instructions = body.get('instructions') or ''
    risk_profile = body.get('riskProfile') or 'balanced'

    if not isinstance(text, str):
        text = ''

    delay = app.config['STREAM_ISSUE_DELAY']
    max_cells = app.config['DIFF_MAX_CELLS']
    threshold = app.config['DIFF_SIGNIFICANCE_THRESHOLD']

    def generate():
        events = review_document(
            text,
            instructions,
            risk_profile,
            pause=delay,
            max_cells=max_cells,
            significance_threshold=threshold
        )
        for event in events:
            yield format_sse(event)

    response = Response(stream_with_context(generate()), mimetype='text/event-stream')
    response.headers['Cache-Control'] = 'no-cache'
    response.headers['X-Accel-Buffering'] = 'no'
    return response


@app.route('/api/diff', methods=['POST'])
def diff():
    """Diff an original clause against a revision"""
    body = request.get_json(silent=True) or {}
    original = body.get('original')
    revised = body.get('revised')

    if not isinstance(original, str) or not isinstance(revised, str):
        return jsonify({'error': "Both 'original' and 'revised' must be strings."}), 400

    max_cells = body.get('maxCells', app.config['DIFF_MAX_CELLS'])
    threshold = body.get('threshold', app.config['DIFF_SIGNIFICANCE_THRESHOLD'])
    if not isinstance(max_cells, int) or not isinstance(threshold, int):
        return jsonify({'error': "'maxCells' and 'threshold' must be integers."}), 400

    return jsonify(_diff_payload(original, revised, max_cells, threshold))


@app.route('/api/clauses', methods=['POST'])
def clauses():
    """Split a document (JSON text or uploaded DOCX/PDF) into clauses"""
    temp_path = None

    try:
        if 'file' in request.files:
            file = request.files['file']
            if not file.filename:
                return jsonify({'error': 'No file selected'}), 400
            if not file.filename.lower().endswith(SUPPORTED_SUFFIXES):
                return jsonify({'error': 'Only DOCX and PDF files are allowed'}), 400
            temp_path = _save_upload(file)
            text = extract_text(temp_path)
        else:
            body = request.get_json(silent=True) or {}
            text = body.get('text')
            if not isinstance(text, str):
                return jsonify({'error': 'Missing contract text.'}), 400

        result = split_into_clauses(text)
        return jsonify({'clauses': result, 'count': len(result)})

    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except RuntimeError as e:
        logger.error(f"Text extraction failed: {e}")
        return jsonify({'error': str(e)}), 422
    finally:
        _cleanup(temp_path)


@app.route('/api/redline', methods=['POST'])
def redline():
    """Apply edits to an uploaded DOCX as tracked changes and return the result"""
    if 'file' not in request.files:
        return jsonify({'error': 'No file uploaded'}), 400

    file = request.files['file']
    if not file.filename or not file.filename.lower().endswith('.docx'):
        return jsonify({'error': 'Only DOCX files are allowed'}), 400

    try:
        edits = json.loads(request.form.get('edits') or '[]')
        comments = json.loads(request.form.get('comments') or '[]')
    except json.JSONDecodeError:
        return jsonify({'error': "'edits' and 'comments' must be JSON arrays."}), 400

    if not isinstance(edits, list) or not isinstance(comments, list):
        return jsonify({'error': "'edits' and 'comments' must be JSON arrays."}), 400

    author = request.form.get('author') or 'Redline AI'
    source_path = None
    result = None

    try:
        source_path = _save_upload(file)
        result = apply_redlines(source_path, edits, author=author, comments=comments)
        content = result.path.read_bytes()
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.exception(f"Failed to apply redlines: {e}")
        return jsonify({'error': 'Failed to apply redlines', 'message': str(e)}), 500
    finally:
        _cleanup(source_path, result.path if result else None)

    base_name = Path(secure_filename(file.filename)).stem or 'contract'
    response = send_file(
        BytesIO(content),
        mimetype=DOCX_MIMETYPE,
        as_attachment=True,
        download_name=f"{base_name}_redlined.docx"
    )
    response.headers['X-Redline-Applied'] = str(len(result.applied))
    response.headers['X-Redline-Unmatched'] = str(len(result.unmatched))
    return response


@app.route('/api/settings', methods=['GET', 'PUT', 'POST'])
def settings():
    """Read or replace the stored settings blob"""
    if request.method == 'GET':
        return jsonify(load_settings() or {})

    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({'error': 'Settings must be a JSON object.'}), 400

    endpoint = body.get('endpoint')
    if endpoint is not None and not isinstance(endpoint, str):
        return jsonify({'error': "'endpoint' must be a string."}), 400

    stored = {'endpoint': (endpoint or '').strip()}
    saved = save_settings(stored)
    return jsonify({'success': saved, 'settings': stored})


if __name__ == '__main__':
    app.run(debug=False, host='0.0.0.0', port=app.config['PORT'])
