# backend/tests/test_page_estimator.py
import io
import zipfile
from xml.sax.saxutils import escape

import pytest

from doccost.domain.models import ValidationError
from doccost.services.page_estimator import (
    BYTES_PER_MB,
    DOCX_SIZE_TIERS,
    PDF_SIZE_TIERS,
    DocxPageEstimator,
    PdfPageEstimator,
    PdfPageStats,
    estimate_pages,
    estimator_for,
    extract_docx_paragraphs,
    fallback_pages,
    text_stats,
    validate_manual_page_count,
)

LONG_TEXT = "Lorem ipsum dolor sit amet, consectetur adipiscing elit, sed do eiusmod."
SHORT_TEXT = "12"


class FakePage:
    def __init__(self, text="", images=0):
        self._text = text
        self.images = [{"name": f"img{i}"} for i in range(images)]

    def extract_text(self):
        return self._text


class FakePdf:
    def __init__(self, pages):
        self.pages = pages

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def _patch_pdf(monkeypatch, pages):
    monkeypatch.setattr("doccost.services.page_estimator.pdfplumber.open", lambda stream: FakePdf(pages))


def _patch_pdf_failure(monkeypatch):
    def boom(stream):
        raise ValueError("broken xref table")

    monkeypatch.setattr("doccost.services.page_estimator.pdfplumber.open", boom)


def _docx_bytes(paragraph_xml):
    xml = (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        '<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">'
        f"<w:body>{''.join(paragraph_xml)}</w:body></w:document>"
    )
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("word/document.xml", xml)
    return buf.getvalue()


def _paragraph(text):
    return f'<w:p><w:r><w:t xml:space="preserve">{escape(text)}</w:t></w:r></w:p>'


# -- PDF ------------------------------------------------------------------------


def test_pdf_counts_only_substantive_pages(monkeypatch):
    _patch_pdf(monkeypatch, [FakePage(LONG_TEXT), FakePage(LONG_TEXT), FakePage(""), FakePage(SHORT_TEXT), FakePage(LONG_TEXT)])
    assert estimate_pages("report.pdf", b"%PDF-1.7 fake") == 3


def test_pdf_image_pages_count_and_inflate_estimate(monkeypatch):
    # 2 text pages + 2 image-only pages -> 4 substantive, image ratio 0.5
    # 4 * (1 + 0.5 * 0.5) = 5
    _patch_pdf(monkeypatch, [FakePage(LONG_TEXT), FakePage(images=1), FakePage(LONG_TEXT), FakePage(images=2)])
    assert estimate_pages("scan.pdf", b"%PDF-1.7 fake") == 5


def test_pdf_with_no_substantive_pages_is_at_least_one(monkeypatch):
    _patch_pdf(monkeypatch, [FakePage(""), FakePage(SHORT_TEXT)])
    assert estimate_pages("blank.pdf", b"%PDF-1.7 fake") == 1


def test_pdf_with_zero_pages_but_content_is_one(monkeypatch):
    _patch_pdf(monkeypatch, [])
    assert estimate_pages("empty.pdf", b"%PDF-1.7 fake") == 1


def test_pdf_stats_math_rounds_up():
    estimator = PdfPageEstimator()
    stats = PdfPageStats(total_pages=3, substantive_pages=3, image_pages=1)
    # 3 * (1 + 0.5 / 3) = 3.5 -> 4
    assert estimator.pages_from_stats(stats, content_size=10) == 4


def test_pdf_parse_failure_falls_back_to_size(monkeypatch):
    _patch_pdf_failure(monkeypatch)
    # 1 MB at 10 pages/MB plus 1 MB at 5 pages/MB
    assert estimate_pages("broken.pdf", b"\0" * (2 * BYTES_PER_MB)) == 15


def test_real_parser_on_garbage_bytes_never_raises():
    assert estimate_pages("garbage.pdf", b"this is not a pdf at all") == 1
    assert estimate_pages("empty.pdf", b"") == 1


def test_pdf_fallback_is_monotonic_in_size():
    sizes = [0, 1, 1000, BYTES_PER_MB - 1, BYTES_PER_MB, BYTES_PER_MB + 1, 3 * BYTES_PER_MB,
             5 * BYTES_PER_MB, 5 * BYTES_PER_MB + 1, 20 * BYTES_PER_MB, 21 * BYTES_PER_MB, 100 * BYTES_PER_MB]
    pages = [fallback_pages(s, PDF_SIZE_TIERS) for s in sizes]
    assert pages == sorted(pages)
    assert min(pages) >= 1


def test_fallback_tiers_accumulate():
    assert fallback_pages(0, PDF_SIZE_TIERS) == 1
    assert fallback_pages(BYTES_PER_MB, PDF_SIZE_TIERS) == 10
    assert fallback_pages(3 * BYTES_PER_MB, PDF_SIZE_TIERS) == 20
    assert fallback_pages(BYTES_PER_MB, DOCX_SIZE_TIERS) == 30


# -- DOCX -----------------------------------------------------------------------


def test_docx_weighted_estimate():
    words = " ".join(["word"] * 50)
    data = _docx_bytes([_paragraph(words) for _ in range(100)])
    # each 249-char paragraph wraps to 3 lines
    # words 5000/575*0.4 + chars 24900/2550*0.3 + lines 300/46*0.2 + paras 100/8*0.1 = 8.96 -> 9
    assert estimate_pages("thesis.docx", data) == 9


def test_docx_dense_paragraphs_estimate_more_pages_than_sparse():
    estimator = DocxPageEstimator()
    dense = text_stats([" ".join(["word"] * 400)] * 5)
    sparse = text_stats([" ".join(["word"] * 40)] * 50)
    assert dense.words == sparse.words
    assert estimator.pages_from_stats(dense) > 0
    # same word count, dense text gets smaller pages for words
    dense_words_only = DocxPageEstimator(weights={"words": 1.0})
    assert dense_words_only.pages_from_stats(dense) > dense_words_only.pages_from_stats(sparse)


def test_docx_line_breaks_and_tabs_are_kept():
    data = _docx_bytes(
        ["<w:p><w:r><w:t>first line</w:t><w:br/><w:t>second</w:t><w:tab/><w:t>line</w:t></w:r></w:p>", "<w:p/>"]
    )
    paragraphs = extract_docx_paragraphs(data)
    assert paragraphs == ["first line\nsecond\tline", ""]

    stats = text_stats(paragraphs)
    assert stats.paragraphs == 1
    assert stats.lines == 2
    assert stats.words == 4
    assert stats.chars == len("first line second line")


def test_long_paragraphs_wrap_into_lines():
    stats = text_stats(["x" * 250, "short", "a\nb"])
    assert stats.paragraphs == 3
    assert stats.lines == 3 + 1 + 2


def test_line_density_separates_prose_from_lists():
    chars_only = {"chars": 1.0}
    prose = text_stats([" ".join(["lorem"] * 80)] * 10)
    listing = text_stats(["item " + str(i) for i in range(80)])
    # prose fills ~96 chars per wrapped line, list items ~7
    assert prose.chars / prose.lines > 70
    assert listing.chars / listing.lines < 70
    estimator = DocxPageEstimator(weights=chars_only)
    # 4790 chars / (3000 * 0.85)
    assert estimator.pages_from_stats(prose) == 2


def test_empty_docx_is_one_page():
    assert estimate_pages("blank.docx", _docx_bytes([])) == 1


def test_docx_without_document_xml_falls_back():
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("other.txt", "x")
    assert estimate_pages("odd.docx", buf.getvalue()) == 1


def test_legacy_doc_uses_docx_size_fallback():
    # 100 KB at 30 pages/MB -> 2.93 -> 3
    assert estimate_pages("old.doc", b"\xd0\xcf\x11\xe0" + b"\0" * (100 * 1024 - 4)) == 3


# -- dispatch & manual entry ------------------------------------------------------


def test_unsupported_extension_is_one_page():
    assert estimator_for("notes.txt") is None
    assert estimate_pages("notes.txt", b"x" * 10_000_000) == 1
    assert estimate_pages("README", b"hello") == 1


def test_extension_lookup_is_case_insensitive():
    assert isinstance(estimator_for("REPORT.PDF"), PdfPageEstimator)
    assert isinstance(estimator_for("Letter.Docx"), DocxPageEstimator)


def test_manual_page_count_accepts_positive_ints():
    assert validate_manual_page_count(12) == 12
    assert validate_manual_page_count(" 7 ") == 7


@pytest.mark.parametrize("bad", [0, -3, "0", "abc", "", 2.5, None, True, "9" * 5000])
def test_manual_page_count_rejects_instead_of_clamping(bad):
    with pytest.raises(ValidationError):
        validate_manual_page_count(bad)
