"""
Review orchestrator - coordinates clause-by-clause document review.
Segments the document, asks the LLM for issues per clause and annotates
each suggested edit with a rendered diff.
"""
import json
import logging
import time
from typing import Callable, Dict, Iterator, List, Optional

from redline.services.clause_segmenter import split_into_clauses
from redline.utils.diff import DEFAULT_MAX_CELLS, SKIPPED, diff_tokens
from redline.utils.diff_render import (
    DEFAULT_SIGNIFICANCE_THRESHOLD,
    format_diff_plain,
    format_diff_regions,
    render_regions_html,
)

logger = logging.getLogger(__name__)

IssueFinder = Callable[[str, Optional[str], str], List[dict]]


def _text_field(issue: dict, key: str) -> Optional[str]:
    """String value of an issue field; anything else the model sent counts as missing."""
    value = issue.get(key)
    if value is not None and not isinstance(value, str):
        logger.warning(f"Ignoring non-string '{key}' in model issue: {type(value).__name__}")
        return None
    return value


def annotate_issue(
    issue: dict,
    clause: str,
    max_cells: int = DEFAULT_MAX_CELLS,
    significance_threshold: int = DEFAULT_SIGNIFICANCE_THRESHOLD
) -> dict:
    """
    Normalize one model issue and attach diff renderings for edits.

    Args:
        issue: Raw issue dict from the model.
        clause: Clause text the issue was produced from.
        max_cells: Diff cell budget.
        significance_threshold: Region-merge threshold for the HTML diff.

    Returns:
        New dict with type, originalText, newText, explanation, severity,
        located, and for edits diff / diffHtml / diffSkipped.
    """
    original = _text_field(issue, 'originalText') or ''
    new_text = _text_field(issue, 'newText')
    issue_type = issue.get('type')
    if issue_type not in ('edit', 'comment'):
        issue_type = 'edit' if new_text is not None else 'comment'

    severity = issue.get('severity')
    if severity not in ('low', 'medium', 'high'):
        severity = 'medium'

    annotated = {
        'type': issue_type,
        'originalText': original,
        'explanation': _text_field(issue, 'explanation') or '',
        'severity': severity,
        'located': bool(original) and original in clause,
    }

    if not annotated['located']:
        logger.warning(f"Issue text not found verbatim in clause: {original[:60]!r}")

    if issue_type == 'edit':
        new_text = new_text or ''
        segments = diff_tokens(original, new_text, max_cells)
        annotated['newText'] = new_text
        annotated['diffSkipped'] = segments is SKIPPED
        annotated['diff'] = format_diff_plain(segments)
        annotated['diffHtml'] = render_regions_html(format_diff_regions(segments, significance_threshold))

    return annotated


def review_document(
    text: str,
    instructions: Optional[str] = None,
    risk_profile: str = 'balanced',
    find_issues: Optional[IssueFinder] = None,
    pause: float = 0.0,
    max_cells: int = DEFAULT_MAX_CELLS,
    significance_threshold: int = DEFAULT_SIGNIFICANCE_THRESHOLD
) -> Iterator[Dict]:
    """
    Review a document clause by clause, yielding progress events.

    Clauses are processed sequentially in document order. A clause whose
    review fails produces a clause_error event and the review moves on.

    Args:
        text: Full document text.
        instructions: Optional reviewer guidance passed to every clause.
        risk_profile: Review posture.
        find_issues: Callable(text, instructions, risk_profile) -> issues.
            Defaults to llm_client.find_issues.
        pause: Seconds to sleep after each emitted issue.
        max_cells: Diff cell budget for each edit.
        significance_threshold: Region-merge threshold for the HTML diffs.

    Yields:
        Event dicts: start, clause, issue, clause_error, complete (or error).
    """
    if not text or not text.strip():
        yield {'type': 'error', 'message': 'Missing contract text.'}
        return

    if find_issues is None:
        # Import here so the core can be used without provider settings
        from redline.services.llm_client import find_issues

    clauses = split_into_clauses(text)
    total_clauses = len(clauses)
    logger.info(f"Starting document review: {total_clauses} clauses, {len(text)} chars")

    yield {'type': 'start', 'message': 'Starting analysis...', 'totalClauses': total_clauses}

    issue_count = 0
    for clause_index, clause in enumerate(clauses):
        logger.debug(f"Reviewing clause {clause_index + 1}/{total_clauses}")
        yield {'type': 'clause', 'index': clause_index, 'total': total_clauses, 'text': clause}

        try:
            issues = [
                annotate_issue(issue, clause, max_cells, significance_threshold)
                for issue in find_issues(clause, instructions, risk_profile)
                if isinstance(issue, dict)
            ]
        except Exception as e:
            logger.warning(f"Clause {clause_index + 1} review failed: {e}")
            yield {'type': 'clause_error', 'index': clause_index, 'message': str(e) or 'Analysis failed.'}
            continue

        for annotated in issues:
            annotated['index'] = issue_count
            annotated['total'] = len(issues)
            annotated['clauseIndex'] = clause_index
            issue_count += 1

            yield {'type': 'issue', 'issue': annotated}

            if pause:
                time.sleep(pause)

    logger.info(f"Document review complete: {issue_count} issues across {total_clauses} clauses")
    yield {'type': 'complete', 'totalIssues': issue_count, 'totalClauses': total_clauses}


def format_sse(event: Dict) -> str:
    """Frame an event as a server-sent-events data line."""
    return f"data: {json.dumps(event)}\n\n"
