# backend/doccost/services/page_estimator.py
from __future__ import annotations

import io
import logging
import math
import re
import zipfile
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence, Tuple
from xml.etree import ElementTree

import pdfplumber

from doccost.domain.models import ValidationError

logger = logging.getLogger(__name__)


BYTES_PER_MB = 1024 * 1024

# (upper bound in MB, pages per MB inside that bracket). Brackets accumulate
# like tax bands so the estimate never drops when a file crosses a boundary.
SizeTiers = Sequence[Tuple[float, float]]

PDF_SIZE_TIERS: SizeTiers = (
    (1.0, 10.0),
    (5.0, 5.0),
    (20.0, 3.0),
    (math.inf, 2.0),
)

DOCX_SIZE_TIERS: SizeTiers = (
    (1.0, 30.0),
    (5.0, 15.0),
    (math.inf, 8.0),
)

# PDF structure heuristics
MIN_PAGE_TEXT_CHARS = 50
IMAGE_DENSITY_FACTOR = 0.5

# DOCX text heuristics
WORDS_PER_PAGE = 500
CHARS_PER_PAGE = 3000
LINES_PER_PAGE = 46
PARAGRAPHS_PER_PAGE = 8
DENSE_WORDS_PER_PARAGRAPH = 60
# Paragraphs wrap at WRAP_CHARS_PER_LINE; an average fill above
# DENSE_CHARS_PER_LINE counts as dense prose.
WRAP_CHARS_PER_LINE = 100
DENSE_CHARS_PER_LINE = 70
DENSE_SCALE = 0.85
SPARSE_SCALE = 1.15
ESTIMATE_WEIGHTS = {"words": 0.4, "chars": 0.3, "lines": 0.2, "paragraphs": 0.1}


class EstimationError(RuntimeError):
    """Raised inside an estimator when structural parsing fails."""


def fallback_pages(size_bytes: int, tiers: SizeTiers) -> int:
    """
    Size-based page estimate used when a document cannot be parsed.

    Each MB bracket contributes at its own pages-per-MB ratio, and the ratio
    falls as files grow (fixed overhead dominates small files).
    Always returns >= 1.
    """
    remaining = max(0, size_bytes) / BYTES_PER_MB
    lower = 0.0
    pages = 0.0
    for upper, pages_per_mb in tiers:
        if remaining <= 0:
            break
        span = min(remaining, upper - lower)
        pages += span * pages_per_mb
        remaining -= span
        lower = upper
    return max(1, math.ceil(round(pages, 6)))


class PageEstimator(Protocol):
    name: str

    def estimate(self, data: bytes) -> int:
        """Estimate a page count; raise EstimationError when parsing fails."""

    def fallback(self, size_bytes: int) -> int:
        ...


@dataclass(frozen=True)
class PdfPageStats:
    total_pages: int
    substantive_pages: int
    image_pages: int


class PdfPageEstimator:
    name = "pdf"

    def __init__(
        self,
        *,
        min_text_chars: int = MIN_PAGE_TEXT_CHARS,
        image_density_factor: float = IMAGE_DENSITY_FACTOR,
        size_tiers: SizeTiers = PDF_SIZE_TIERS,
    ) -> None:
        self.min_text_chars = min_text_chars
        self.image_density_factor = image_density_factor
        self.size_tiers = size_tiers

    def collect_stats(self, data: bytes) -> PdfPageStats:
        try:
            with pdfplumber.open(io.BytesIO(data)) as pdf:
                total = 0
                substantive = 0
                with_images = 0
                for page in pdf.pages:
                    total += 1
                    text = page.extract_text() or ""
                    has_image = len(page.images) > 0
                    if has_image:
                        with_images += 1
                    if len(text.strip()) > self.min_text_chars or has_image:
                        substantive += 1
        except Exception as e:
            raise EstimationError(f"could not parse PDF: {type(e).__name__}: {e}") from e

        return PdfPageStats(total_pages=total, substantive_pages=substantive, image_pages=with_images)

    def pages_from_stats(self, stats: PdfPageStats, *, content_size: int) -> int:
        pages = float(stats.substantive_pages)
        if stats.image_pages > 0 and stats.total_pages > 0:
            # Image-heavy documents print denser than their page count suggests,
            # so the whole document is scaled, not only the image pages.
            image_ratio = stats.image_pages / stats.total_pages
            pages *= 1 + self.image_density_factor * image_ratio

        count = math.ceil(round(pages, 6))
        if count < 1 and content_size > 0:
            count = 1
        return max(1, count)

    def estimate(self, data: bytes) -> int:
        stats = self.collect_stats(data)
        return self.pages_from_stats(stats, content_size=len(data))

    def fallback(self, size_bytes: int) -> int:
        return fallback_pages(size_bytes, self.size_tiers)


_W_NS = "{http://schemas.openxmlformats.org/wordprocessingml/2006/main}"
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class TextStats:
    words: int
    chars: int
    lines: int
    paragraphs: int


def extract_docx_paragraphs(data: bytes) -> List[str]:
    """
    Pull the body paragraphs out of a .docx container.

    Explicit line breaks inside a paragraph are kept as newlines.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            xml_bytes = zf.read("word/document.xml")
        root = ElementTree.fromstring(xml_bytes)
    except (zipfile.BadZipFile, KeyError, ElementTree.ParseError) as e:
        raise EstimationError(f"could not read DOCX: {type(e).__name__}: {e}") from e

    paragraphs = []
    for para in root.iter(f"{_W_NS}p"):
        parts = []
        for node in para.iter():
            if node.tag == f"{_W_NS}t" and node.text:
                parts.append(node.text)
            elif node.tag == f"{_W_NS}tab":
                parts.append("\t")
            elif node.tag in (f"{_W_NS}br", f"{_W_NS}cr"):
                parts.append("\n")
        paragraphs.append("".join(parts))
    return paragraphs


def text_stats(paragraphs: Sequence[str]) -> TextStats:
    words = 0
    chars = 0
    lines = 0
    non_empty = 0
    for para in paragraphs:
        if not para.strip():
            continue
        non_empty += 1
        words += len(para.split())
        chars += len(_WHITESPACE_RE.sub(" ", para).strip())
        lines += sum(
            math.ceil(len(_WHITESPACE_RE.sub(" ", ln).strip()) / WRAP_CHARS_PER_LINE)
            for ln in para.splitlines()
            if ln.strip()
        )
    return TextStats(words=words, chars=chars, lines=lines, paragraphs=non_empty)


class DocxPageEstimator:
    name = "docx"

    def __init__(
        self,
        *,
        weights: Optional[Dict[str, float]] = None,
        size_tiers: SizeTiers = DOCX_SIZE_TIERS,
    ) -> None:
        self.weights = dict(weights or ESTIMATE_WEIGHTS)
        self.size_tiers = size_tiers

    def pages_from_stats(self, stats: TextStats) -> int:
        words_per_paragraph = stats.words / stats.paragraphs if stats.paragraphs else 0.0
        chars_per_line = stats.chars / stats.lines if stats.lines else 0.0

        # Dense text (long paragraphs, long lines) fits less per page.
        word_scale = DENSE_SCALE if words_per_paragraph > DENSE_WORDS_PER_PARAGRAPH else SPARSE_SCALE
        char_scale = DENSE_SCALE if chars_per_line > DENSE_CHARS_PER_LINE else SPARSE_SCALE

        estimates = {
            "words": stats.words / (WORDS_PER_PAGE * word_scale),
            "chars": stats.chars / (CHARS_PER_PAGE * char_scale),
            "lines": stats.lines / LINES_PER_PAGE,
            "paragraphs": stats.paragraphs / PARAGRAPHS_PER_PAGE,
        }
        weighted = sum(estimates[key] * weight for key, weight in self.weights.items())
        return max(1, math.ceil(round(weighted, 6)))

    def estimate(self, data: bytes) -> int:
        return self.pages_from_stats(text_stats(extract_docx_paragraphs(data)))

    def fallback(self, size_bytes: int) -> int:
        return fallback_pages(size_bytes, self.size_tiers)


_DOCX = DocxPageEstimator()

ESTIMATORS: Dict[str, PageEstimator] = {
    "pdf": PdfPageEstimator(),
    "docx": _DOCX,
    # Legacy .doc is not a zip container; it always lands on the DOCX fallback.
    "doc": _DOCX,
}


def file_extension(filename: str) -> str:
    if not isinstance(filename, str) or "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].strip().lower()


def estimator_for(filename: str) -> Optional[PageEstimator]:
    return ESTIMATORS.get(file_extension(filename))


def estimate_pages(filename: str, data: bytes) -> int:
    """
    Estimate a document's page count from its raw bytes.

    Never raises. Parse failures degrade to a file-size estimate and
    unsupported extensions count as a single page.
    """
    estimator = estimator_for(filename)
    if estimator is None:
        return 1

    size = len(data) if data else 0
    try:
        return max(1, estimator.estimate(data or b""))
    except Exception as e:
        pages = estimator.fallback(size)
        logger.warning("Page estimation for %s fell back to size (%d bytes -> %d pages): %s", filename, size, pages, e)
        return pages


def validate_manual_page_count(value: object) -> int:
    """
    Validate a user-entered page count. Rejects instead of clamping.
    """
    if isinstance(value, bool):
        raise ValidationError("Page count must be a positive whole number")
    if isinstance(value, str):
        s = value.strip()
        if not s.isdecimal():
            raise ValidationError("Page count must be a positive whole number")
        try:
            value = int(s)
        except ValueError as e:
            raise ValidationError("Page count must be a positive whole number") from e
    if not isinstance(value, int) or value <= 0:
        raise ValidationError("Page count must be a positive whole number")
    return value
