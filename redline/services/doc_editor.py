"""
Document editor service for applying suggested edits to DOCX files as tracked changes.
Edits are diffed at token level so only the changed words show up as
insertions and deletions.
"""
import logging
import tempfile
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from docx import Document
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.text.paragraph import Paragraph

from redline.utils.diff import DEFAULT_MAX_CELLS, SKIPPED, Segment, SegmentKind, diff_tokens

logger = logging.getLogger(__name__)

DEFAULT_AUTHOR = 'Redline AI'
COMMENT_PREFIX = 'AI:'


@dataclass
class RedlineResult:
    """Outcome of apply_redlines."""

    path: Path
    applied: List[Dict] = field(default_factory=list)
    unmatched: List[Dict] = field(default_factory=list)
    comments_added: int = 0


class RevisionIds:
    """Hands out w:id values not already used by revisions in the document."""

    def __init__(self, doc: Document):
        existing = [
            int(value) for value in doc.element.body.xpath('.//w:ins/@w:id | .//w:del/@w:id')
            if str(value).isdigit()
        ]
        self._next = max(existing, default=0) + 1

    def next(self) -> int:
        value = self._next
        self._next += 1
        return value


def format_comment_text(text: str) -> str:
    """Trim a comment and prefix it with 'AI:' unless it already has it."""
    trimmed = (text or '').strip()
    if not trimmed:
        return ''
    return trimmed if trimmed.startswith(COMMENT_PREFIX) else f"{COMMENT_PREFIX} {trimmed}"


def _iter_paragraphs(doc: Document) -> Iterator[Paragraph]:
    """Body paragraphs followed by paragraphs inside table cells."""
    yield from doc.paragraphs
    for table in doc.tables:
        for row in table.rows:
            for cell in row.cells:
                yield from cell.paragraphs


def _make_run(text: str, rPr, deleted: bool = False):
    run = OxmlElement('w:r')
    if rPr is not None:
        run.append(deepcopy(rPr))
    t = OxmlElement('w:delText' if deleted else 'w:t')
    t.set(qn('xml:space'), 'preserve')
    t.text = text
    run.append(t)
    return run


def _make_revision(tag: str, author: str, rev_id: int, date: str):
    element = OxmlElement(tag)
    element.set(qn('w:id'), str(rev_id))
    element.set(qn('w:author'), author)
    element.set(qn('w:date'), date)
    return element


def _edit_segments(original: str, new_text: str, max_cells: int) -> List[Segment]:
    segments = diff_tokens(original, new_text, max_cells)
    if segments is SKIPPED:
        logger.info("Edit too large for word-level diff; replacing whole span")
        segments = [
            Segment(SegmentKind.DELETE, original),
            Segment(SegmentKind.INSERT, new_text),
        ]
    return [segment for segment in segments if segment.text]


def _build_edit_elements(segments: List[Segment], rPr, author: str, ids: RevisionIds, date: str) -> list:
    """
    EQUAL segments become plain w:r runs.
    DELETE segments become w:del > w:r > w:delText.
    INSERT segments become w:ins > w:r > w:t.
    """
    elements = []
    for segment in segments:
        if segment.kind is SegmentKind.EQUAL:
            elements.append(_make_run(segment.text, rPr))
        elif segment.kind is SegmentKind.DELETE:
            wrapper = _make_revision('w:del', author, ids.next(), date)
            wrapper.append(_make_run(segment.text, rPr, deleted=True))
            elements.append(wrapper)
        else:
            wrapper = _make_revision('w:ins', author, ids.next(), date)
            wrapper.append(_make_run(segment.text, rPr))
            elements.append(wrapper)
    return elements


def _locate_edits(text: str, edits: List[Dict]) -> List[Tuple[int, Dict]]:
    """First occurrence of each edit in text, in order, dropping overlaps."""
    found = []
    for edit in edits:
        start = text.find(edit['originalText'])
        if start >= 0:
            found.append((start, edit))
    found.sort(key=lambda item: item[0])

    located = []
    cursor = 0
    for start, edit in found:
        if start < cursor:
            continue
        located.append((start, edit))
        cursor = start + len(edit['originalText'])
    return located


def _redline_paragraph(
    paragraph: Paragraph,
    located: List[Tuple[int, Dict]],
    author: str,
    ids: RevisionIds,
    date: str,
    max_cells: int
) -> None:
    """
    Rebuild the paragraph's runs with tracked changes for the located edits.

    Text outside the edits is kept as plain runs. Run formatting is taken
    from the paragraph's first run.
    """
    text = paragraph.text
    p = paragraph._p

    first_run = p.find(qn('w:r'))
    rPr = None
    if first_run is not None and first_run.find(qn('w:rPr')) is not None:
        rPr = deepcopy(first_run.find(qn('w:rPr')))

    for child in list(p):
        if child.tag in (qn('w:r'), qn('w:hyperlink')):
            p.remove(child)

    cursor = 0
    for start, edit in located:
        if start > cursor:
            p.append(_make_run(text[cursor:start], rPr))
        segments = _edit_segments(edit['originalText'], edit['newText'], max_cells)
        for element in _build_edit_elements(segments, rPr, author, ids, date):
            p.append(element)
        cursor = start + len(edit['originalText'])

    if cursor < len(text):
        p.append(_make_run(text[cursor:], rPr))


def _enable_track_changes(doc: Document) -> None:
    settings = doc.settings.element
    if settings.find(qn('w:trackRevisions')) is None:
        settings.append(OxmlElement('w:trackRevisions'))


def _add_comment(doc: Document, comment: Dict, author: str) -> bool:
    body = format_comment_text(comment.get('comment', ''))
    if not body:
        return False

    anchor = (comment.get('anchorText') or '').lower()
    paragraphs = [p for p in _iter_paragraphs(doc) if p.text.strip()]
    if not paragraphs:
        logger.warning("Document has no text to attach comments to")
        return False

    target = paragraphs[0]
    if anchor:
        for paragraph in paragraphs:
            if anchor in paragraph.text.lower():
                target = paragraph
                break
        else:
            logger.debug(f"Comment anchor not found, using first paragraph: {anchor[:40]!r}")

    runs = target.runs or [target.add_run()]
    initials = ''.join(word[0] for word in author.split() if word)[:3]
    doc.add_comment(runs, text=body, author=author, initials=initials)
    return True


def apply_redlines(
    docx_path: Path,
    edits: List[Dict[str, str]],
    author: str = DEFAULT_AUTHOR,
    comments: Optional[List[Dict[str, str]]] = None,
    max_cells: int = DEFAULT_MAX_CELLS
) -> RedlineResult:
    """
    Apply edits to a DOCX document as tracked changes.

    Each edit replaces the first occurrence of its originalText (matched
    within a single paragraph) with newText.

    Args:
        docx_path: Path to the source DOCX file.
        edits: List of dicts with 'originalText' and 'newText' keys.
        author: Revision and comment author.
        comments: Optional list of {'anchorText', 'comment'} dicts.
        max_cells: Diff cell budget per edit.

    Returns:
        RedlineResult with the path of a new temporary DOCX file.

    Raises:
        FileNotFoundError: If docx_path doesn't exist.
        ValueError: If edits is empty or malformed.
    """
    docx_path = Path(docx_path)
    if not docx_path.exists():
        raise FileNotFoundError(f"Document not found: {docx_path}")

    if not edits and not comments:
        raise ValueError("No edits provided to apply")

    for edit in edits:
        if not isinstance(edit, dict) or 'originalText' not in edit or 'newText' not in edit:
            raise ValueError("Each edit must have 'originalText' and 'newText' keys")
        if not isinstance(edit['originalText'], str) or not isinstance(edit['newText'], str):
            raise ValueError("Edit 'originalText' and 'newText' must be strings")
        if not edit['originalText']:
            raise ValueError("Edit 'originalText' cannot be empty")

    for comment in comments or []:
        if not isinstance(comment, dict):
            raise ValueError("Each comment must be an object with 'anchorText' and 'comment'")
        if not all(isinstance(comment.get(key) or '', str) for key in ('anchorText', 'comment')):
            raise ValueError("Comment 'anchorText' and 'comment' must be strings")

    doc = Document(str(docx_path))
    ids = RevisionIds(doc)
    date = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')

    remaining = list(edits)
    applied = []

    for paragraph in _iter_paragraphs(doc):
        if not remaining:
            break
        if paragraph._p.xpath('./w:ins | ./w:del'):
            # Paragraph already carries revisions; rebuilding it would reorder them
            continue
        text = paragraph.text
        located = _locate_edits(text, remaining)
        if not located:
            continue

        _redline_paragraph(paragraph, located, author, ids, date, max_cells)
        for _, edit in located:
            applied.append(edit)
            remaining.remove(edit)

    for edit in remaining:
        logger.warning(f"Edit text not found in document: {edit['originalText'][:60]!r}")

    comments_added = 0
    for comment in comments or []:
        if _add_comment(doc, comment, author):
            comments_added += 1

    _enable_track_changes(doc)

    temp_file = tempfile.NamedTemporaryFile(
        delete=False,
        suffix='.docx',
        prefix='contract_redlined_'
    )
    temp_path = Path(temp_file.name)
    temp_file.close()

    doc.save(str(temp_path))

    logger.info(
        f"Applied {len(applied)}/{len(edits)} edits and {comments_added} comments to {docx_path.name}"
    )
    return RedlineResult(temp_path, applied, remaining, comments_added)
