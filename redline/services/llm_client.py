"""
LLM client for clause review, chat and issue detection using OpenAI or Azure OpenAI.
"""
import os
import re
import json
import logging
import time
from typing import List, Optional, Union

import openai
from openai import OpenAI, AzureOpenAI
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

logger = logging.getLogger(__name__)

# Initialized lazily by _get_client()
client: Optional[Union[OpenAI, AzureOpenAI]] = None

DEFAULT_OPENAI_MODEL = 'gpt-4o'
DEFAULT_AZURE_API_VERSION = '2024-06-01'

MAX_DOCUMENT_CONTEXT = 8000
MAX_HISTORY_MESSAGES = 10

POSTURES = {
    'balanced': "Balanced counsel: pragmatic, neutral tone.",
    'cautious': "Risk-averse counsel: highlight risks and tighten protections.",
    'aggressive': "Aggressive negotiation: push for stronger protections.",
}

SEVERITIES = ('low', 'medium', 'high')

REVIEW_SYSTEM_PROMPT = " ".join([
    "You are a senior contract review assistant.",
    "{posture}",
    "Return JSON only, no markdown.",
    "JSON schema:",
    "{{ revisedText: string, comments: [{{ anchorText: string, comment: string }}], summary: string }}",
    "Preserve defined terms and numbering.",
    "Avoid adding facts not present in the clause.",
    "If no changes are needed, return revisedText identical to the input and leave comments empty.",
    "Anchor comments using exact substrings from the revised clause when possible.",
])

CHAT_SYSTEM_PROMPT = """You are a senior contract review assistant embedded in Microsoft Word.
Your role is to help users understand, analyze, and improve contract language.

Guidelines:
- Be concise and practical in your responses
- When explaining clauses, use plain language
- When identifying risks, be specific about what could go wrong
- When suggesting changes, provide the exact revised text
- Consider the full document context when answering, but focus on any selected text

If you suggest revised text, include it in your response clearly marked.
Return JSON only with this schema:
{ "response": "your conversational response", "suggestion": "optional revised clause text if you provided one" }"""

ISSUES_SYSTEM_PROMPT = """You are a senior contract review assistant that analyzes contracts clause by clause.
{posture}

CRITICAL: You must respond with a JSON object whose "issues" key holds the issues found in the contract.
Each issue should be a separate object in the "issues" array.

Issue types:
- 'edit': A suggested change to the contract text
- 'comment': A note or risk flag without changing text

JSON schema:
{{ "issues": [
  {{
    "type": "edit" | "comment",
    "originalText": "exact text from contract to find/change",
    "newText": "replacement text (only for edit type)",
    "explanation": "brief explanation of why this change/comment is needed",
    "severity": "low" | "medium" | "high"
  }}
]}}

Rules:
- originalText must be an EXACT substring from the input contract
- For edits, provide the revised text in newText
- For comments, omit newText and just provide explanation
- Keep explanations concise (1-2 sentences)
- Order issues by their appearance in the document
- If no issues found, return {{ "issues": [] }}
- Return ONLY valid JSON, no other text"""


def _string_field(result: dict, key: str) -> str:
    """Field of a parsed model response, or '' when it is missing or not a string."""
    value = result.get(key)
    return value if isinstance(value, str) else ''


def _posture(risk_profile: Optional[str]) -> str:
    return POSTURES.get(risk_profile or 'balanced', POSTURES['balanced'])


def _get_client() -> Union[OpenAI, AzureOpenAI]:
    """Get or initialize the provider client selected by AI_PROVIDER."""
    global client
    if client is None:
        provider = os.getenv('AI_PROVIDER', 'openai').lower()

        if provider == 'azure':
            endpoint = os.getenv('AZURE_OPENAI_ENDPOINT')
            api_key = os.getenv('AZURE_OPENAI_KEY')
            deployment = os.getenv('AZURE_OPENAI_DEPLOYMENT')
            if not endpoint or not api_key or not deployment:
                raise ValueError("Azure OpenAI configuration is incomplete.")
            client = AzureOpenAI(
                azure_endpoint=endpoint.rstrip('/'),
                api_key=api_key,
                api_version=os.getenv('AZURE_OPENAI_API_VERSION', DEFAULT_AZURE_API_VERSION)
            )
        else:
            api_key = os.getenv('OPENAI_API_KEY')
            if not api_key:
                raise ValueError("OPENAI_API_KEY is not configured.")
            client = OpenAI(api_key=api_key)

        logger.info(f"LLM client initialized for provider: {provider}")
    return client


def _model_name() -> str:
    """Model for OpenAI, deployment name for Azure."""
    if os.getenv('AI_PROVIDER', 'openai').lower() == 'azure':
        return os.getenv('AZURE_OPENAI_DEPLOYMENT', '')
    return os.getenv('OPENAI_MODEL', DEFAULT_OPENAI_MODEL)


@retry(
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    retry=retry_if_exception_type((openai.RateLimitError, openai.APIError)),
    reraise=True
)
def _call_model(messages: List[dict], temperature: float, max_tokens: int) -> str:
    """
    Call the chat completions API with retry logic.

    Args:
        messages: Chat messages (system, history, user).
        temperature: Sampling temperature.
        max_tokens: Completion token limit.

    Returns:
        Raw response content ('' when the model returns nothing).

    Raises:
        openai.RateLimitError: On rate limit (will be retried).
        openai.APIError: On API errors (will be retried).
        RuntimeError: On timeouts and other errors.
    """
    try:
        response = _get_client().chat.completions.create(
            model=_model_name(),
            messages=messages,
            response_format={"type": "json_object"},
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=60.0
        )
        return response.choices[0].message.content or ''

    except openai.APITimeoutError:
        logger.error("LLM request timed out")
        raise RuntimeError("AI request timed out")
    except (openai.RateLimitError, openai.APIError):
        raise  # Will be retried by tenacity
    except ValueError:
        raise
    except Exception as e:
        logger.error(f"LLM call failed: {type(e).__name__} - {e}")
        raise RuntimeError(f"AI service error: {type(e).__name__} - {e}")


def parse_model_content(content: Optional[str]) -> Optional[dict]:
    """
    Parse a JSON object from model output.

    Falls back to the first {...} span when the content has extra text
    around the JSON.

    Returns:
        Parsed object, or None if nothing parses.
    """
    if not content:
        return None

    try:
        return json.loads(content)
    except json.JSONDecodeError:
        match = re.search(r'\{[\s\S]*\}', content)
        if not match:
            return None
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError:
            return None


def parse_issue_list(content: str) -> List[dict]:
    """
    Parse an issue list from model output.

    Accepts a bare JSON array or an object with an "issues" array.

    Raises:
        ValueError: If no JSON array can be recovered.
    """
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        match = re.search(r'\[[\s\S]*\]', content)
        if not match:
            raise ValueError("Could not parse AI response as JSON array.")
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            raise ValueError("Could not parse AI response as JSON array.")

    if isinstance(parsed, list):
        return [issue for issue in parsed if isinstance(issue, dict)]
    if isinstance(parsed, dict) and isinstance(parsed.get('issues'), list):
        return [issue for issue in parsed['issues'] if isinstance(issue, dict)]
    return []


def build_review_messages(text: str, instructions: Optional[str], risk_profile: Optional[str]) -> List[dict]:
    user_parts = [
        "Review this clause and suggest tracked-change edits and short comments:",
        text,
    ]
    if instructions:
        user_parts.append(f"Additional guidance: {instructions}")

    return [
        {"role": "system", "content": REVIEW_SYSTEM_PROMPT.format(posture=_posture(risk_profile))},
        {"role": "user", "content": "\n\n".join(user_parts)},
    ]


def build_chat_messages(
    message: str,
    document_context: str = '',
    selection_context: str = '',
    history: Optional[List[dict]] = None
) -> List[dict]:
    """
    Build chat messages with the document as background knowledge.

    The document is truncated to MAX_DOCUMENT_CONTEXT characters and only
    the last MAX_HISTORY_MESSAGES history entries are kept.
    """
    system_content = CHAT_SYSTEM_PROMPT

    if document_context and document_context.strip():
        if len(document_context) > MAX_DOCUMENT_CONTEXT:
            document_context = document_context[:MAX_DOCUMENT_CONTEXT] + "\n[... document truncated ...]"
        system_content += (
            "\n\n=== FULL DOCUMENT (Background Knowledge) ===\n"
            f"{document_context}\n"
            "=== END DOCUMENT ==="
        )

    messages = [{"role": "system", "content": system_content}]

    for entry in (history or [])[-MAX_HISTORY_MESSAGES:]:
        messages.append({"role": entry.get('role', 'user'), "content": entry.get('content', '')})

    user_content = message
    if selection_context and selection_context.strip():
        user_content = f"[FOCUS: Currently selected text]\n{selection_context}\n\n[Question]\n{message}"

    messages.append({"role": "user", "content": user_content})
    return messages


def build_issue_messages(text: str, instructions: Optional[str], risk_profile: Optional[str]) -> List[dict]:
    user_lines = [
        "Analyze this contract and identify all issues, suggested edits, and risk flags:",
        "",
        "---CONTRACT START---",
        text,
        "---CONTRACT END---",
        "",
    ]
    if instructions:
        user_lines.extend([f"Additional guidance: {instructions}", ""])
    user_lines.append("Return a JSON object with the issues found.")

    return [
        {"role": "system", "content": ISSUES_SYSTEM_PROMPT.format(posture=_posture(risk_profile))},
        {"role": "user", "content": "\n".join(user_lines)},
    ]


def review_clause(text: str, instructions: Optional[str] = None, risk_profile: str = 'balanced') -> dict:
    """
    Ask the model for a revised clause and anchored comments.

    Args:
        text: Clause or selection text.
        instructions: Optional extra guidance for the reviewer.
        risk_profile: 'balanced', 'cautious' or 'aggressive'.

    Returns:
        Dictionary with keys:
        - revisedText (str): Suggested clause text ('' if the model gave none)
        - comments (list): [{'anchorText', 'comment'}]
        - summary (str): Short summary of the review

    Raises:
        ValueError: If the provider is not configured.
        RuntimeError: On provider failure or unparseable output.
    """
    start_time = time.time()

    content = _call_model(build_review_messages(text, instructions, risk_profile), 0.2, 1200)
    result = parse_model_content(content)
    if not isinstance(result, dict):
        logger.error(f"Unparseable review response ({len(content)} chars)")
        raise RuntimeError("Unable to parse model response.")

    comments = result.get('comments')
    review = {
        'revisedText': _string_field(result, 'revisedText'),
        'comments': [
            {'anchorText': _string_field(item, 'anchorText'), 'comment': item['comment']}
            for item in (comments if isinstance(comments, list) else [])
            if isinstance(item, dict) and _string_field(item, 'comment')
        ],
        'summary': _string_field(result, 'summary'),
    }

    logger.info(
        f"Clause review complete: {len(text)} chars, {len(review['comments'])} comments, "
        f"duration={time.time() - start_time:.2f}s"
    )
    return review


def chat(
    message: str,
    document_context: str = '',
    selection_context: str = '',
    history: Optional[List[dict]] = None
) -> dict:
    """
    Answer a chat message about the contract.

    Returns:
        {'response': str, 'suggestion': str | None}
    """
    messages = build_chat_messages(message, document_context, selection_context, history)
    content = _call_model(messages, 0.4, 1500)

    result = parse_model_content(content)
    if not isinstance(result, dict):
        logger.warning("Chat response was not JSON; returning raw content")
        result = {'response': content or "I couldn't process that request."}

    return {
        'response': _string_field(result, 'response'),
        'suggestion': _string_field(result, 'suggestion') or None,
    }


def find_issues(text: str, instructions: Optional[str] = None, risk_profile: str = 'balanced') -> List[dict]:
    """
    Ask the model for a list of edit/comment issues in a clause.

    Raises:
        RuntimeError: If the model returns nothing.
        ValueError: If the response contains no JSON array.
    """
    content = _call_model(build_issue_messages(text, instructions, risk_profile), 0.2, 4000)
    if not content:
        raise RuntimeError("No response from AI.")

    issues = parse_issue_list(content)
    logger.debug(f"Model returned {len(issues)} issues for {len(text)} chars")
    return issues
