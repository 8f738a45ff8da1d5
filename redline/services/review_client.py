"""
HTTP client for a running review API.
Used by tools that talk to the review server instead of calling the LLM directly.
"""
import logging
from typing import List, Optional

import requests

from redline.services.settings_store import get_endpoint

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 60


def normalize_review_response(data: Optional[dict]) -> dict:
    """
    Coerce a review response into {'revisedText', 'comments', 'summary'}.

    Comments without text are dropped; anchorText defaults to ''.
    """
    data = data if isinstance(data, dict) else {}

    revised = data.get('revisedText')
    summary = data.get('summary')
    comments = data.get('comments')

    return {
        'revisedText': revised.strip() if isinstance(revised, str) else '',
        'comments': [
            {'anchorText': item.get('anchorText') or '', 'comment': item['comment']}
            for item in (comments if isinstance(comments, list) else [])
            if isinstance(item, dict) and item.get('comment')
        ],
        'summary': summary.strip() if isinstance(summary, str) else '',
    }


def _post(endpoint: str, body: dict, timeout: int) -> dict:
    response = requests.post(endpoint, json=body, timeout=timeout)

    if not response.ok:
        message = response.text
        logger.error(f"Request to {endpoint} failed with {response.status_code}")
        raise RuntimeError(message or f"Request failed with {response.status_code}.")

    return response.json()


def review_clause(
    text: str,
    instructions: Optional[str] = None,
    risk_profile: str = 'balanced',
    scope: str = 'selection',
    endpoint: Optional[str] = None,
    timeout: int = REQUEST_TIMEOUT
) -> dict:
    """
    Send a clause to the review endpoint.

    Args:
        text: Clause text.
        instructions: Optional reviewer guidance.
        risk_profile: Review posture.
        scope: 'selection', 'paragraph' or 'document'.
        endpoint: Review URL; defaults to the stored endpoint setting.
        timeout: Request timeout in seconds.

    Returns:
        Normalized review dict.

    Raises:
        ValueError: If no endpoint is configured.
        RuntimeError: If the server answers with an error status.
    """
    endpoint = endpoint or get_endpoint()
    if not endpoint:
        raise ValueError("Set a review API endpoint first.")

    data = _post(endpoint, {
        'text': text,
        'instructions': instructions,
        'riskProfile': risk_profile,
        'scope': scope,
    }, timeout)
    return normalize_review_response(data)


def send_chat_message(
    message: str,
    document_context: str = '',
    selection_context: str = '',
    history: Optional[List[dict]] = None,
    endpoint: Optional[str] = None,
    timeout: int = REQUEST_TIMEOUT
) -> dict:
    """
    Send a chat message to the chat endpoint.

    Returns:
        {'response': str, 'suggestion': str | None}

    Raises:
        ValueError: If no endpoint is given.
        RuntimeError: If the server answers with an error status.
    """
    if not endpoint:
        raise ValueError("Set a chat API endpoint first.")

    body = {
        'message': message,
        'documentContext': document_context or '',
        'selectionContext': selection_context or '',
        'history': [
            {'role': entry.get('role'), 'content': entry.get('content')}
            for entry in (history or [])
        ],
    }
    logger.debug(f"Sending chat message to {endpoint} ({len(body['history'])} history entries)")

    data = _post(endpoint, body, timeout)
    return {
        'response': data.get('response') or "I couldn't generate a response.",
        'suggestion': data.get('suggestion') or None,
    }
