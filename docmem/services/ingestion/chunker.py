"""Page-aware sentence chunking.

Splits extracted text into :class:`~docmem.models.document.ChunkDraft`
objects that fit a character budget (``max_tokens * chars_per_token``).

The strategy:

1. **Pages first** -- the PDF extractor emits ``Page N:`` markers; text is
   split on them so every chunk carries the page it came from.  Text
   before the first marker, or text with no markers at all, is page 1.
2. **Whole page when it fits** -- a page whose trimmed text is within the
   budget becomes exactly one chunk.
3. **Greedy sentences otherwise** -- the page is split at sentence
   boundaries with an abbreviation-aware splitter that keeps the
   terminating punctuation, and sentences are packed into a chunk until
   the next one would overflow.  A single sentence longer than the budget
   is emitted whole rather than cut mid-sentence.

There is no overlap between chunks.  Ordinals are global across pages,
contiguous and start at 0.  The output is a pure function of the input.
"""

from __future__ import annotations

import math
import re

import structlog

from docmem.models.document import ChunkDraft

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_MAX_TOKENS = 1000
CHARS_PER_TOKEN = 4
INLINE_UPLOAD_MAX_CHARS = 4000

_PAGE_MARKER_RE = re.compile(r"Page (\d+):")
_SENTENCE_END_RE = re.compile(r"[.!?](?:\s|$)")

# Common abbreviations that should NOT trigger a sentence split.
_ABBREVIATIONS = frozenset(
    {
        "Dr",
        "Mr",
        "Mrs",
        "Ms",
        "Prof",
        "Jr",
        "Sr",
        "St",
        "Ave",
        "Blvd",
        "Vol",
        "No",
        "vs",
        "etc",
        "approx",
        "dept",
        "est",
        "govt",
        "inc",
        "ltd",
        "co",
        "ft",
        "e.g",
        "i.e",
    }
)


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class DocumentChunker:
    """Splits extracted text into page-tagged, sentence-aligned chunks.

    Parameters
    ----------
    max_tokens:
        Default token budget per chunk.
    chars_per_token:
        Conversion factor from the token budget to a character budget.
    """

    def __init__(
        self,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        chars_per_token: int = CHARS_PER_TOKEN,
    ) -> None:
        self._default_max_chars = max_tokens * chars_per_token

    @property
    def default_max_chars(self) -> int:
        return self._default_max_chars

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str, max_chars: int | None = None) -> list[ChunkDraft]:
        """Split *text* into ordered :class:`ChunkDraft` objects.

        Parameters
        ----------
        text:
            Extracted document text, optionally containing ``Page N:`` markers.
        max_chars:
            Character budget per chunk; defaults to the instance budget.

        Returns
        -------
        list[ChunkDraft]
            Empty when *text* is blank.
        """
        budget = max_chars if max_chars is not None else self._default_max_chars
        if budget <= 0:
            raise ValueError("max_chars must be positive")
        if not text or not text.strip():
            return []

        drafts: list[ChunkDraft] = []
        for page, page_text in self._split_pages(text):
            for content in self._chunk_page(page_text, budget):
                drafts.append(ChunkDraft(content=content, page=page, chunk_index=len(drafts)))

        logger.debug(
            "chunking_complete",
            num_chunks=len(drafts),
            max_chars=budget,
            pages=len({d.page for d in drafts}),
        )
        return drafts

    # ------------------------------------------------------------------
    # Page / sentence splitting
    # ------------------------------------------------------------------

    @staticmethod
    def _split_pages(text: str) -> list[tuple[int, str]]:
        """Return ``(page_number, page_text)`` pairs in document order."""
        markers = list(_PAGE_MARKER_RE.finditer(text))
        if not markers:
            return [(1, text)]

        pages: list[tuple[int, str]] = []
        preamble = text[: markers[0].start()]
        if preamble.strip():
            pages.append((1, preamble))
        for i, marker in enumerate(markers):
            end = markers[i + 1].start() if i + 1 < len(markers) else len(text)
            pages.append((int(marker.group(1)), text[marker.end():end]))
        return pages

    def _chunk_page(self, page_text: str, budget: int) -> list[str]:
        trimmed = page_text.strip()
        if not trimmed:
            return []
        if len(trimmed) <= budget:
            return [trimmed]
        return self._accumulate_sentences(self._split_sentences(trimmed), budget)

    @staticmethod
    def _split_sentences(text: str) -> list[str]:
        """Split *text* at sentence boundaries while respecting abbreviations.

        Handles ``.``, ``!``, ``?`` followed by whitespace or end-of-string.
        Periods after known abbreviations are masked with ``\\x00`` (same
        length, so match offsets still index the original text).
        """
        masked = text
        for abbr in _ABBREVIATIONS:
            masked = re.sub(rf"\b{re.escape(abbr)}\.", f"{abbr}\x00", masked)

        sentences: list[str] = []
        last = 0
        for match in _SENTENCE_END_RE.finditer(masked):
            end = match.end()
            sentence = text[last:end].strip()
            if sentence:
                sentences.append(sentence)
            last = end

        # Trailing text that didn't end with punctuation.
        remainder = text[last:].strip()
        if remainder:
            sentences.append(remainder)

        return sentences if sentences else [text]

    # ------------------------------------------------------------------
    # Chunk accumulation
    # ------------------------------------------------------------------

    @staticmethod
    def _accumulate_sentences(sentences: list[str], budget: int) -> list[str]:
        """Greedily pack sentences into chunks of at most *budget* chars.

        A sentence that alone exceeds the budget becomes its own chunk.
        """
        chunks: list[str] = []
        current = ""
        for sentence in sentences:
            candidate = f"{current} {sentence}" if current else sentence
            if len(candidate) > budget and current:
                chunks.append(current)
                current = sentence
            else:
                current = candidate
        if current:
            chunks.append(current)
        return chunks
