"""
Clause segmentation for per-clause contract review.

Documents are split by the first strategy that produces more than one
piece (blank lines, then enumerated lines, then sentence groups for long
walls of text), and the pieces are coalesced so every clause is big
enough to review on its own.
"""
import re
import logging
from typing import Callable, List, NamedTuple

logger = logging.getLogger(__name__)

# Coalescing targets (characters)
MIN_CLAUSE_LENGTH = 150
SHORT_TAIL_LENGTH = 100

# Sentence grouping only applies to documents longer than this
SENTENCE_SPLIT_MIN_DOC_LENGTH = 500
SENTENCE_GROUP_LENGTH = 400

CLAUSE_SEPARATOR = '\n\n'

_BLANK_LINES_RE = re.compile(r'\n[ \t]*(?:\n[ \t]*)+')

# A new line starting with "1." / "2)" / "(a)" / "(iv)" or a capital letter
_ENUMERATED_LINE_RE = re.compile(r'\n(?=[ \t]*(?:\d+[.)]|\([A-Za-z0-9]+\)|[A-Z]))')

_SENTENCE_END_RE = re.compile(r'(?<=[.!?])\s+(?=[A-Z])')


class SplitStrategy(NamedTuple):
    name: str
    applies: Callable[[str], bool]
    split: Callable[[str], List[str]]


def _normalize_line_endings(text: str) -> str:
    return text.replace('\r\n', '\n').replace('\r', '\n')


def _non_empty(pieces: List[str]) -> List[str]:
    return [piece for piece in pieces if piece.strip()]


def split_on_blank_lines(text: str) -> List[str]:
    """Split on runs of one or more blank lines."""
    return _non_empty(_BLANK_LINES_RE.split(text))


def split_on_enumerated_lines(text: str) -> List[str]:
    """Split at line breaks followed by a list number, a (label) or a capital letter."""
    return _non_empty(_ENUMERATED_LINE_RE.split(text))


def split_into_sentence_groups(text: str, group_length: int = SENTENCE_GROUP_LENGTH) -> List[str]:
    """
    Split into sentences and pack them greedily into groups.

    A group is closed as soon as it reaches group_length characters.
    """
    sentences = _non_empty(_SENTENCE_END_RE.split(text))
    groups = []
    buffer = ''

    for sentence in sentences:
        sentence = sentence.strip()
        buffer = f"{buffer} {sentence}" if buffer else sentence
        if len(buffer) >= group_length:
            groups.append(buffer)
            buffer = ''

    if buffer:
        groups.append(buffer)

    return groups


SPLIT_STRATEGIES = [
    SplitStrategy('blank_lines', lambda text: True, split_on_blank_lines),
    SplitStrategy('enumerated_lines', lambda text: True, split_on_enumerated_lines),
    SplitStrategy(
        'sentence_groups',
        lambda text: len(text) > SENTENCE_SPLIT_MIN_DOC_LENGTH,
        split_into_sentence_groups
    ),
]


def _split_raw(text: str) -> List[str]:
    """Run the strategies in order until one yields more than one piece."""
    pieces = [text]

    for strategy in SPLIT_STRATEGIES:
        if not strategy.applies(text):
            continue
        candidate = strategy.split(text)
        if candidate:
            pieces = candidate
        if len(candidate) > 1:
            logger.debug(f"Split strategy '{strategy.name}' produced {len(candidate)} pieces")
            return pieces

    return pieces


def coalesce_pieces(pieces: List[str]) -> List[str]:
    """
    Merge raw pieces into clauses of reviewable size.

    Pieces are trimmed and joined with a blank line until the buffer is at
    least MIN_CLAUSE_LENGTH characters and contains a period. A short
    leftover is attached to the previous clause instead of standing alone.
    """
    clauses: List[str] = []
    buffer = ''

    for piece in pieces:
        piece = piece.strip()
        if not piece:
            continue

        buffer = f"{buffer}{CLAUSE_SEPARATOR}{piece}" if buffer else piece

        if len(buffer) >= MIN_CLAUSE_LENGTH and '.' in buffer:
            clauses.append(buffer)
            buffer = ''

    if buffer:
        if len(buffer) < SHORT_TAIL_LENGTH and clauses:
            clauses[-1] = f"{clauses[-1]}{CLAUSE_SEPARATOR}{buffer}"
        else:
            clauses.append(buffer)

    return clauses


def split_into_clauses(text: str) -> List[str]:
    """
    Split a contract into clause-sized blocks in document order.

    Args:
        text: Full document text.

    Returns:
        List of non-empty clause strings; empty for blank input.
    """
    if not text or not text.strip():
        return []

    normalized = _normalize_line_endings(text)
    clauses = coalesce_pieces(_split_raw(normalized))

    logger.info(f"Segmented document of {len(text)} chars into {len(clauses)} clauses")
    return clauses
