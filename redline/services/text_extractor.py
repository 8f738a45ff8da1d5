"""
Text extraction service for uploaded contract documents.
Supports DOCX and PDF formats.
"""
import re
import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

import docx
from docx.oxml.ns import qn
from pdfminer.high_level import extract_text as pdf_extract_text
from pdfminer.pdfparser import PDFSyntaxError

logger = logging.getLogger(__name__)

# Maximum characters to extract to avoid runaway prompts
MAX_TEXT_LENGTH = 2_000_000

SUPPORTED_SUFFIXES = ('.docx', '.pdf')

_ROMAN = [
    (1000, 'M'), (900, 'CM'), (500, 'D'), (400, 'CD'), (100, 'C'), (90, 'XC'),
    (50, 'L'), (40, 'XL'), (10, 'X'), (9, 'IX'), (5, 'V'), (4, 'IV'), (1, 'I'),
]


def normalize_whitespace(text: str) -> str:
    """
    Normalize whitespace and remove control characters.

    Line endings become '\\n', runs of spaces collapse to one, more than two
    newlines collapse to a blank line, and each line is stripped.
    """
    text = re.sub(r'[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F-\x9F]', '', text)
    text = text.replace('\r\n', '\n').replace('\r', '\n')
    text = re.sub(r'[ \t]+', ' ', text)
    text = re.sub(r'\n{3,}', '\n\n', text)
    text = '\n'.join(line.strip() for line in text.split('\n'))
    return text.strip()


def _to_roman(num: int) -> str:
    result = ''
    for value, symbol in _ROMAN:
        while num >= value:
            result += symbol
            num -= value
    return result


def _to_letters(value: int, base: str) -> str:
    # 1 -> a, 26 -> z, 27 -> aa
    result = ''
    value -= 1
    while value >= 0:
        result = chr(ord(base) + value % 26) + result
        value = value // 26 - 1
    return result


def _format_number(value: int, num_fmt: str) -> str:
    """Format a counter value using a Word numFmt (decimal, lowerLetter, upperRoman, ...)."""
    if num_fmt == 'lowerLetter':
        return _to_letters(value, 'a')
    if num_fmt == 'upperLetter':
        return _to_letters(value, 'A')
    if num_fmt == 'lowerRoman':
        return _to_roman(value).lower()
    if num_fmt == 'upperRoman':
        return _to_roman(value)
    return str(value)


def _get_numbering_definitions(doc) -> Dict[Tuple[int, int], Dict[str, Optional[str]]]:
    """
    Read list level formats from the document's numbering part.

    Returns:
        Mapping of (numId, level) to {'lvlText', 'numFmt'}.
    """
    definitions = {}

    try:
        numbering_part = doc.part.numbering_part
    except (KeyError, NotImplementedError):
        logger.debug("Document has no numbering part")
        return definitions

    root = numbering_part.element
    abstract_levels = {}
    for abstract_num in root.findall(qn('w:abstractNum')):
        abstract_id = abstract_num.get(qn('w:abstractNumId'))
        levels = {}
        for lvl in abstract_num.findall(qn('w:lvl')):
            ilvl = lvl.get(qn('w:ilvl'))
            if ilvl is None:
                continue
            lvl_text = lvl.find(qn('w:lvlText'))
            num_fmt = lvl.find(qn('w:numFmt'))
            levels[int(ilvl)] = {
                'lvlText': lvl_text.get(qn('w:val')) if lvl_text is not None else None,
                'numFmt': num_fmt.get(qn('w:val')) if num_fmt is not None else 'decimal',
            }
        abstract_levels[abstract_id] = levels

    for num in root.findall(qn('w:num')):
        num_id = num.get(qn('w:numId'))
        abstract_ref = num.find(qn('w:abstractNumId'))
        if num_id is None or abstract_ref is None:
            continue
        for level, fmt in abstract_levels.get(abstract_ref.get(qn('w:val')), {}).items():
            definitions[(int(num_id), level)] = fmt

    logger.debug(f"Extracted {len(definitions)} numbering definitions")
    return definitions


def _paragraph_number(para, definitions: Dict, counters: Dict) -> Optional[str]:
    """
    Rebuild the visible list number of a paragraph ("3.", "(b)", "iv)").

    Only the paragraph's own level placeholder is substituted.
    """
    pPr = para._p.pPr
    if pPr is None or pPr.numPr is None:
        return None

    numPr = pPr.numPr
    if numPr.numId is None:
        return None

    # A numPr without w:ilvl is level 0
    level = numPr.ilvl.val if numPr.ilvl is not None else 0
    num_id = numPr.numId.val
    if level is None or num_id is None or num_id == 0:
        return None

    key = (num_id, level)
    counters[key] = counters.get(key, 0) + 1
    # Deeper levels restart when a parent level advances
    for other in list(counters):
        if other[0] == num_id and other[1] > level:
            del counters[other]

    fmt = definitions.get(key)
    if fmt is None:
        return f"{counters[key]}."

    formatted = _format_number(counters[key], fmt.get('numFmt') or 'decimal')
    lvl_text = fmt.get('lvlText')
    if not lvl_text:
        return f"{formatted}."
    return re.sub(r'%\d', '', lvl_text.replace(f'%{level + 1}', formatted)) or None


def _extract_docx_text(path: Path) -> str:
    """
    Extract paragraphs (with list numbering restored) and table cells from a DOCX file.

    Raises:
        RuntimeError: On extraction failure or an empty document.
    """
    try:
        doc = docx.Document(str(path))
    except Exception as e:
        logger.error(f"Failed to open DOCX: {type(e).__name__} - {e}")
        raise RuntimeError("Failed to extract text from document. The file may be corrupted or in an unsupported format.")

    definitions = _get_numbering_definitions(doc)
    counters = {}
    blocks = []
    numbered = 0

    for para in doc.paragraphs:
        if not para.text.strip():
            continue
        number = _paragraph_number(para, definitions, counters)
        if number:
            numbered += 1
            blocks.append(f"{number} {para.text}")
        else:
            blocks.append(para.text)

    for table in doc.tables:
        for row in table.rows:
            for cell in row.cells:
                if cell.text.strip():
                    blocks.append(cell.text)

    text = '\n\n'.join(blocks)
    if not text.strip():
        raise RuntimeError("Document appears to be empty")

    logger.info(f"Extracted {len(text)} characters from DOCX file ({numbered} numbered paragraphs)")
    return text


def _extract_pdf_text(path: Path) -> str:
    """
    Extract text from a PDF file.

    Raises:
        RuntimeError: On extraction failure.
    """
    try:
        text = pdf_extract_text(str(path))
    except PDFSyntaxError:
        logger.error("PDF file has syntax errors")
        raise RuntimeError("Failed to extract text from PDF. The file may be corrupted.")
    except Exception as e:
        logger.error(f"Failed to extract text from PDF: {type(e).__name__}")
        raise RuntimeError("Failed to extract text from PDF. The file may be encrypted, corrupted, or in an unsupported format.")

    if not text or not text.strip():
        raise RuntimeError("PDF appears to be empty or contains only images")

    logger.info(f"Extracted {len(text)} characters from PDF file")
    return text


def extract_text(path: Path) -> str:
    """
    Extract text from a contract document (DOCX or PDF).

    Args:
        path: Path to the document file.

    Returns:
        Normalized text, paragraphs separated by blank lines.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValueError: If the file format is unsupported.
        RuntimeError: If extraction fails.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Contract file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == '.docx':
        raw_text = _extract_docx_text(path)
    elif suffix == '.pdf':
        raw_text = _extract_pdf_text(path)
    else:
        logger.error(f"Unsupported file format: {suffix}")
        raise ValueError(f"Unsupported file format: {suffix}. Only DOCX and PDF files are supported.")

    text = normalize_whitespace(raw_text)

    if len(text) > MAX_TEXT_LENGTH:
        logger.warning(f"Text length {len(text)} exceeds maximum {MAX_TEXT_LENGTH}, truncating")
        text = text[:MAX_TEXT_LENGTH]

    logger.info(f"Text extraction complete: {len(text)} characters after normalization")
    return text
