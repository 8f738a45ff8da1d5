"""
Tests for DOCX/PDF text extraction and whitespace normalization.
"""
import pytest
from docx import Document

from redline.services import text_extractor
from redline.services.text_extractor import extract_text, normalize_whitespace


@pytest.fixture
def contract_docx(tmp_path):
    doc = Document()
    doc.add_paragraph('SERVICES AGREEMENT')
    doc.add_paragraph('')
    doc.add_paragraph('The  Supplier   shall\tprovide the Services.')
    doc.add_paragraph('The Customer shall pay the Fees.')
    table = doc.add_table(rows=1, cols=2)
    table.cell(0, 0).text = 'Fee'
    table.cell(0, 1).text = 'USD 1,000'
    path = tmp_path / 'contract.docx'
    doc.save(str(path))
    return path


class TestNormalizeWhitespace:

    def test_collapses_spaces_and_blank_lines(self):
        assert normalize_whitespace('a  b\t c\n\n\n\nd') == 'a b c\n\nd'

    def test_line_endings_and_control_characters(self):
        assert normalize_whitespace('one\r\ntwo\rthree\x07') == 'one\ntwo\nthree'

    def test_strips_lines(self):
        assert normalize_whitespace('  first  \n   second ') == 'first\nsecond'


class TestNumberFormatting:

    @pytest.mark.parametrize('value,num_fmt,expected', [
        (3, 'decimal', '3'),
        (1, 'lowerLetter', 'a'),
        (27, 'lowerLetter', 'aa'),
        (2, 'upperLetter', 'B'),
        (4, 'lowerRoman', 'iv'),
        (14, 'upperRoman', 'XIV'),
    ])
    def test_format_number(self, value, num_fmt, expected):
        assert text_extractor._format_number(value, num_fmt) == expected


def _numbered_paragraph(doc, text, num_id, level=None):
    paragraph = doc.add_paragraph(text)
    numPr = paragraph._p.get_or_add_pPr().get_or_add_numPr()
    numPr.get_or_add_numId().val = num_id
    if level is not None:
        numPr.get_or_add_ilvl().val = level
    return paragraph


class TestParagraphNumber:

    def test_missing_level_counts_as_level_zero(self):
        doc = Document()
        first = _numbered_paragraph(doc, 'Definitions.', 1)
        second = _numbered_paragraph(doc, 'Term.', 1)
        counters = {}

        assert text_extractor._paragraph_number(first, {}, counters) == '1.'
        assert text_extractor._paragraph_number(second, {}, counters) == '2.'
        assert counters == {(1, 0): 2}

    def test_missing_level_uses_level_zero_format(self):
        doc = Document()
        paragraph = _numbered_paragraph(doc, 'Definitions.', 3)
        definitions = {(3, 0): {'lvlText': '(%1)', 'numFmt': 'lowerLetter'}}

        assert text_extractor._paragraph_number(paragraph, definitions, {}) == '(a)'

    def test_nested_level_restarts(self):
        doc = Document()
        paragraphs = [
            _numbered_paragraph(doc, 'Parent.', 2, 0),
            _numbered_paragraph(doc, 'Child.', 2, 1),
            _numbered_paragraph(doc, 'Parent.', 2, 0),
            _numbered_paragraph(doc, 'Child.', 2, 1),
        ]
        counters = {}

        numbers = [text_extractor._paragraph_number(p, {}, counters) for p in paragraphs]

        assert numbers == ['1.', '1.', '2.', '1.']

    def test_plain_paragraph_has_no_number(self):
        paragraph = Document().add_paragraph('Plain.')
        assert text_extractor._paragraph_number(paragraph, {}, {}) is None


class TestExtractText:

    def test_docx_paragraphs_and_tables(self, contract_docx):
        text = extract_text(contract_docx)

        assert text == (
            'SERVICES AGREEMENT\n\n'
            'The Supplier shall provide the Services.\n\n'
            'The Customer shall pay the Fees.\n\n'
            'Fee\n\n'
            'USD 1,000'
        )

    def test_numbered_list_paragraphs(self, tmp_path):
        doc = Document()
        doc.add_paragraph('Definitions apply.', style='List Number')
        doc.add_paragraph('Term starts today.', style='List Number')
        path = tmp_path / 'numbered.docx'
        doc.save(str(path))

        text = extract_text(path)

        # Style-level numbering carries no numPr on the paragraph itself
        assert text == 'Definitions apply.\n\nTerm starts today.'

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            extract_text(tmp_path / 'nope.docx')

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / 'contract.txt'
        path.write_text('plain text')
        with pytest.raises(ValueError):
            extract_text(path)

    def test_empty_docx(self, tmp_path):
        path = tmp_path / 'empty.docx'
        Document().save(str(path))
        with pytest.raises(RuntimeError):
            extract_text(path)

    def test_corrupt_docx(self, tmp_path):
        path = tmp_path / 'broken.docx'
        path.write_bytes(b'not a zip file')
        with pytest.raises(RuntimeError):
            extract_text(path)

    def test_corrupt_pdf(self, tmp_path):
        path = tmp_path / 'broken.pdf'
        path.write_bytes(b'%PDF-1.4 garbage')
        with pytest.raises(RuntimeError):
            extract_text(path)

    def test_truncates_long_text(self, contract_docx, monkeypatch):
        monkeypatch.setattr(text_extractor, 'MAX_TEXT_LENGTH', 10)
        assert extract_text(contract_docx) == 'SERVICES A'
