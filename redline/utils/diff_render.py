"""
Renderers for token diffs.

Plain bracket markup is used for text previews; the region-merged form is
used for inline HTML so that tiny unchanged fragments (single spaces,
short words) don't break one edit into many highlighted pieces.
"""
from dataclasses import dataclass
from enum import Enum
from typing import List, Union

from markupsafe import escape

from redline.utils.diff import DiffResult, Segment, SegmentKind, SKIPPED

SKIPPED_NOTICE = "Diff preview skipped (selection too large)."

# Equal runs shorter than this (after trimming) are folded into the surrounding change
DEFAULT_SIGNIFICANCE_THRESHOLD = 10


class RegionKind(str, Enum):
    EQUAL = 'equal'
    CHANGE = 'change'


@dataclass(frozen=True)
class Region:
    """Display grouping of one or more diff segments."""

    kind: RegionKind
    text: str = ''
    deleted_text: str = ''
    inserted_text: str = ''

    def to_dict(self) -> dict:
        if self.kind is RegionKind.EQUAL:
            return {'type': self.kind.value, 'text': self.text}
        return {
            'type': self.kind.value,
            'deleted': self.deleted_text,
            'inserted': self.inserted_text
        }


def format_diff_plain(segments: DiffResult) -> str:
    """
    Render segments as text with [-deleted-] and [+inserted+] markers.

    Args:
        segments: Output of diff_tokens.

    Returns:
        Marked-up string, or the skipped notice.
    """
    if segments is SKIPPED:
        return SKIPPED_NOTICE

    parts = []
    for segment in segments:
        if segment.kind is SegmentKind.EQUAL:
            parts.append(segment.text)
        elif segment.kind is SegmentKind.DELETE:
            parts.append(f"[-{segment.text}-]")
        else:
            parts.append(f"[+{segment.text}+]")
    return ''.join(parts)


def format_diff_html(segments: DiffResult) -> str:
    """Render each segment as escaped HTML, changes wrapped in diff spans."""
    if segments is SKIPPED:
        return f"<em>{SKIPPED_NOTICE}</em>"

    parts = []
    for segment in segments:
        escaped = escape(segment.text)
        if segment.kind is SegmentKind.EQUAL:
            parts.append(str(escaped))
        elif segment.kind is SegmentKind.DELETE:
            parts.append(f'<span class="diff-delete">{escaped}</span>')
        else:
            parts.append(f'<span class="diff-insert">{escaped}</span>')
    return ''.join(parts)


@dataclass
class _PendingChange:
    deleted: str = ''
    inserted: str = ''

    def is_empty(self) -> bool:
        return not self.deleted and not self.inserted


def _fold_segment(
    regions: List[Region],
    pending: _PendingChange,
    segment: Segment,
    threshold: int
) -> _PendingChange:
    if segment.kind is SegmentKind.EQUAL:
        if len(segment.text.strip()) >= threshold:
            if not pending.is_empty():
                regions.append(Region(
                    RegionKind.CHANGE,
                    deleted_text=pending.deleted,
                    inserted_text=pending.inserted
                ))
            regions.append(Region(RegionKind.EQUAL, text=segment.text))
            return _PendingChange()
        # Too short to separate two changes; keep it as shared context on both sides
        return _PendingChange(pending.deleted + segment.text, pending.inserted + segment.text)

    if segment.kind is SegmentKind.DELETE:
        return _PendingChange(pending.deleted + segment.text, pending.inserted)

    return _PendingChange(pending.deleted, pending.inserted + segment.text)


def format_diff_regions(
    segments: DiffResult,
    significance_threshold: int = DEFAULT_SIGNIFICANCE_THRESHOLD
) -> Union[List[Region], str]:
    """
    Group segments into equal and change regions.

    Equal segments whose trimmed length is at least significance_threshold
    split changes apart. Shorter equal segments are appended to both the
    pending deleted and inserted text. Whatever is pending at the end
    becomes a change region, or an equal region if both sides turn out
    identical once trimmed.

    Args:
        segments: Output of diff_tokens.
        significance_threshold: Minimum trimmed length of a separating equal run.

    Returns:
        List of Region, or the skipped notice string.
    """
    if segments is SKIPPED:
        return SKIPPED_NOTICE

    regions: List[Region] = []
    pending = _PendingChange()

    for segment in segments:
        pending = _fold_segment(regions, pending, segment, significance_threshold)

    if not pending.is_empty():
        if pending.deleted.strip() != pending.inserted.strip():
            regions.append(Region(
                RegionKind.CHANGE,
                deleted_text=pending.deleted,
                inserted_text=pending.inserted
            ))
        else:
            regions.append(Region(RegionKind.EQUAL, text=pending.inserted))

    return regions


def render_regions_html(regions: Union[List[Region], str]) -> str:
    """
    Render regions as escaped HTML.

    A change region becomes a delete span followed by an insert span; either
    span is left out when its text is empty or only whitespace.
    """
    if isinstance(regions, str):
        return f"<em>{escape(regions)}</em>"

    html = []
    for region in regions:
        if region.kind is RegionKind.EQUAL:
            html.append(str(escape(region.text)))
            continue
        if region.deleted_text.strip():
            html.append(f'<span class="diff-delete">{escape(region.deleted_text)}</span>')
        if region.inserted_text.strip():
            html.append(f'<span class="diff-insert">{escape(region.inserted_text)}</span>')
    return ''.join(html)


def format_diff_regions_html(
    segments: DiffResult,
    significance_threshold: int = DEFAULT_SIGNIFICANCE_THRESHOLD
) -> str:
    """Region-merge segments and render them as HTML."""
    return render_regions_html(format_diff_regions(segments, significance_threshold))
