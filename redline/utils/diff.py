"""
Token-level diff engine for comparing an original clause with a suggested revision.

Text is split into whitespace / non-whitespace tokens and aligned with a
longest-common-subsequence table. The result is a list of segments
(equal, delete, insert) that the renderers in diff_render turn into
display markup.
"""
import re
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Union

logger = logging.getLogger(__name__)

# Upper bound on len(left_tokens) * len(right_tokens)
DEFAULT_MAX_CELLS = 120_000

_TOKEN_RE = re.compile(r'\s+|\S+')


class SegmentKind(str, Enum):
    EQUAL = 'equal'
    DELETE = 'delete'
    INSERT = 'insert'


@dataclass(frozen=True)
class Segment:
    """One run of equal, deleted or inserted text."""

    kind: SegmentKind
    text: str

    def to_dict(self) -> dict:
        return {'type': self.kind.value, 'text': self.text}


class DiffSkipped:
    """
    Returned instead of segments when the comparison is over the cell budget.

    Callers should fall back to showing the revised text without annotations.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return 'SKIPPED'


SKIPPED = DiffSkipped()

DiffResult = Union[List[Segment], DiffSkipped]


def tokenize(text: str) -> List[str]:
    """
    Split text into maximal whitespace and non-whitespace runs.

    Joining the returned tokens gives back the input exactly.

    Args:
        text: Any string (may be empty).

    Returns:
        List of tokens, empty for empty input.
    """
    if not text:
        return []
    return _TOKEN_RE.findall(text)


def _build_lcs_table(left: List[str], right: List[str]) -> List[List[int]]:
    """
    Build the LCS length table from the end of both token lists.

    table[i][j] holds the LCS length of left[i:] and right[j:].
    """
    rows = len(left) + 1
    cols = len(right) + 1
    table = [[0] * cols for _ in range(rows)]

    for i in range(len(left) - 1, -1, -1):
        row = table[i]
        below = table[i + 1]
        token = left[i]
        for j in range(len(right) - 1, -1, -1):
            if token == right[j]:
                row[j] = below[j + 1] + 1
            else:
                row[j] = max(below[j], row[j + 1])

    return table


def _merge_segments(segments: List[Segment]) -> List[Segment]:
    """Collapse consecutive segments of the same kind into one."""
    merged: List[Segment] = []

    for segment in segments:
        if merged and merged[-1].kind is segment.kind:
            merged[-1] = Segment(segment.kind, merged[-1].text + segment.text)
        else:
            merged.append(segment)

    return merged


def diff_tokens(original: str, revised: str, max_cells: int = DEFAULT_MAX_CELLS) -> DiffResult:
    """
    Compute a token-level diff between two strings.

    Walks the LCS table forward from the start. On a mismatch the side with
    the larger remaining LCS is skipped; ties delete the left token first so
    output is deterministic.

    Args:
        original: Text as it currently reads.
        revised: Suggested replacement text.
        max_cells: Budget for the token-count product. Larger problems are skipped.

    Returns:
        List of Segment with no two adjacent segments of the same kind,
        or SKIPPED when the budget is exceeded.
    """
    left = tokenize(original)
    right = tokenize(revised)

    if not left and not right:
        return []

    cells = len(left) * len(right)
    if cells > max_cells:
        logger.info(f"Diff skipped: {len(left)}x{len(right)} tokens exceeds budget of {max_cells} cells")
        return SKIPPED

    table = _build_lcs_table(left, right)

    segments: List[Segment] = []
    i = 0
    j = 0

    while i < len(left) and j < len(right):
        if left[i] == right[j]:
            segments.append(Segment(SegmentKind.EQUAL, left[i]))
            i += 1
            j += 1
        elif table[i + 1][j] >= table[i][j + 1]:
            segments.append(Segment(SegmentKind.DELETE, left[i]))
            i += 1
        else:
            segments.append(Segment(SegmentKind.INSERT, right[j]))
            j += 1

    while i < len(left):
        segments.append(Segment(SegmentKind.DELETE, left[i]))
        i += 1

    while j < len(right):
        segments.append(Segment(SegmentKind.INSERT, right[j]))
        j += 1

    return _merge_segments(segments)


def original_text(segments: List[Segment]) -> str:
    """Rebuild the original side (equal + delete segments)."""
    return ''.join(s.text for s in segments if s.kind is not SegmentKind.INSERT)


def revised_text(segments: List[Segment]) -> str:
    """Rebuild the revised side (equal + insert segments)."""
    return ''.join(s.text for s in segments if s.kind is not SegmentKind.DELETE)
