"""Content extraction: raw bytes + declared media type -> plain text.

:class:`ContentExtractor` dispatches to one strategy per media family:

* :class:`PlainTextExtractor`        -- ``text/*`` passthrough (UTF-8 decode)
* :class:`MarkupExtractor`           -- HTML/XML and Word documents, tags stripped
* :class:`PaginatedDocumentExtractor` -- PDFs, page by page via PyMuPDF
* :class:`ImageExtractor`            -- vision-model description of ``image/*``

Failure policy differs per strategy.  A page that cannot be read aborts the
whole PDF extraction; an image that cannot be described yields a fixed
placeholder string so the document can still complete with one degraded
chunk.
"""

from __future__ import annotations

import asyncio
import io
import re
import zipfile
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import fitz  # PyMuPDF
import structlog
from bs4 import BeautifulSoup

from docmem.utils.errors import ExtractionError, LLMError, UnsupportedMediaTypeError

if TYPE_CHECKING:
    from docmem.interfaces.llm_provider import ILLMProvider

logger = structlog.get_logger(logger_name=__name__)

MIN_MEANINGFUL_CHARS = 10

IMAGE_INSTRUCTION = (
    "Analyze this image thoroughly. Describe all visible text and the salient "
    "visual content: layout, objects, charts and any other relevant details. "
    "Be comprehensive but concise. Transcribe all visible text if any."
)

_WHITESPACE_RE = re.compile(r"\s+")

_WORD_MEDIA_TYPES = frozenset(
    {
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    }
)
_MARKUP_MEDIA_TYPES = frozenset(
    {
        "text/html",
        "application/xhtml+xml",
        "application/xml",
        "text/xml",
    }
) | _WORD_MEDIA_TYPES


def _normalize_media_type(media_type: str) -> str:
    """Lowercase and drop parameters (``text/plain; charset=utf-8`` -> ``text/plain``)."""
    return media_type.split(";", 1)[0].strip().lower()


def image_placeholder(filename: str) -> str:
    return f"[Image content could not be analyzed: {filename}]"


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------
class ExtractionStrategy(ABC):
    """One way of turning bytes into text for a family of media types."""

    name: str = "extractor"

    @abstractmethod
    def handles(self, media_type: str) -> bool:
        """Return True when this strategy claims *media_type* (already normalized)."""

    @abstractmethod
    async def extract(
        self,
        data: bytes,
        media_type: str,
        source_locator: str | None,
        filename: str,
    ) -> str: ...


class PlainTextExtractor(ExtractionStrategy):
    name = "plain_text"

    def handles(self, media_type: str) -> bool:
        return media_type.startswith("text/") and media_type not in _MARKUP_MEDIA_TYPES

    async def extract(
        self,
        data: bytes,
        media_type: str,
        source_locator: str | None,
        filename: str,
    ) -> str:
        return data.decode("utf-8", errors="replace")


class MarkupExtractor(ExtractionStrategy):
    """Strips tags from HTML/XML and Word payloads.

    ``.docx`` files are zip archives; the body lives in ``word/document.xml``.
    Legacy binary ``.doc`` files are decoded as-is and tag-stripped, which
    is lossy but keeps whatever plain runs the file contains.
    """

    name = "markup"

    def handles(self, media_type: str) -> bool:
        return media_type in _MARKUP_MEDIA_TYPES

    async def extract(
        self,
        data: bytes,
        media_type: str,
        source_locator: str | None,
        filename: str,
    ) -> str:
        markup = self._read_markup(data, media_type)
        if media_type in _WORD_MEDIA_TYPES:
            # Word XML has no block separators the parser knows about.
            markup = markup.replace("</w:p>", "</w:p>\n")
        soup = BeautifulSoup(markup, "html.parser")
        for tag in soup(["script", "style"]):
            tag.decompose()
        return _WHITESPACE_RE.sub(" ", soup.get_text(separator=" ")).strip()

    @staticmethod
    def _read_markup(data: bytes, media_type: str) -> str:
        if media_type in _WORD_MEDIA_TYPES and zipfile.is_zipfile(io.BytesIO(data)):
            try:
                with zipfile.ZipFile(io.BytesIO(data)) as archive:
                    return archive.read("word/document.xml").decode("utf-8", errors="replace")
            except (KeyError, zipfile.BadZipFile) as exc:
                raise ExtractionError(
                    message=f"Word document is missing its body: {exc}",
                ) from exc
        return data.decode("utf-8", errors="replace")


class PaginatedDocumentExtractor(ExtractionStrategy):
    """Extracts PDF text page by page with ``Page N:`` markers.

    Output shape::

        Page 1:
        <text of page 1>

        Page 2:
        <text of page 2>

    The chunker relies on these markers to attach page numbers to chunks.
    """

    name = "paginated_document"

    def handles(self, media_type: str) -> bool:
        return media_type in ("application/pdf", "pdf")

    async def extract(
        self,
        data: bytes,
        media_type: str,
        source_locator: str | None,
        filename: str,
    ) -> str:
        return await asyncio.to_thread(self._extract_sync, data, filename)

    @staticmethod
    def _extract_sync(data: bytes, filename: str) -> str:
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            raise ExtractionError(message=f"PDF could not be opened: {exc}") from exc

        parts: list[str] = []
        try:
            for page_num in range(len(doc)):
                try:
                    text = doc[page_num].get_text()
                except Exception as exc:
                    raise ExtractionError(
                        message=f"PDF text extraction failed on page {page_num + 1}: {exc}",
                    ) from exc
                parts.append(f"\n\nPage {page_num + 1}:\n{text}")
        finally:
            doc.close()

        result = "".join(parts).strip()
        logger.debug("pdf_extracted", filename=filename, pages=len(parts), chars=len(result))
        return result


class ImageExtractor(ExtractionStrategy):
    """Describes an image with a vision-capable LLM.

    The model fetches the image from *source_locator* (a public URL), so
    the bytes themselves are never sent.  Missing URL, missing vision
    support or a failed call all produce :func:`image_placeholder`.
    """

    name = "image"

    def __init__(self, llm: ILLMProvider | None, instruction: str = IMAGE_INSTRUCTION) -> None:
        self._llm = llm
        self._instruction = instruction

    def handles(self, media_type: str) -> bool:
        return media_type.startswith("image/")

    async def extract(
        self,
        data: bytes,
        media_type: str,
        source_locator: str | None,
        filename: str,
    ) -> str:
        if self._llm is None or not self._llm.supports_vision() or not source_locator:
            logger.warning(
                "image_extraction_unavailable",
                filename=filename,
                has_url=bool(source_locator),
                has_vision=self._llm is not None and self._llm.supports_vision(),
            )
            return image_placeholder(filename)

        try:
            description = await self._llm.describe_image(source_locator, self._instruction)
        except LLMError as exc:
            logger.warning("image_extraction_failed", filename=filename, error=str(exc))
            return image_placeholder(filename)

        if not description.strip():
            return image_placeholder(filename)
        return description


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------
class ContentExtractor:
    """Routes a payload to the first strategy that claims its media type.

    Parameters
    ----------
    llm:
        Vision-capable LLM used for images.  ``None`` makes every image
        extract to the placeholder.
    strategies:
        Override the strategy list (tests, or extra formats).  Order
        matters: the first strategy whose ``handles`` returns True wins.
    """

    def __init__(
        self,
        llm: ILLMProvider | None = None,
        strategies: list[ExtractionStrategy] | None = None,
    ) -> None:
        self._strategies = strategies or [
            MarkupExtractor(),
            PlainTextExtractor(),
            PaginatedDocumentExtractor(),
            ImageExtractor(llm),
        ]

    def supports(self, media_type: str) -> bool:
        return self._select(_normalize_media_type(media_type)) is not None

    async def extract(
        self,
        data: bytes,
        media_type: str,
        source_locator: str | None = None,
        filename: str = "",
    ) -> str:
        """Extract plain text from *data*.

        Raises
        ------
        UnsupportedMediaTypeError
            No strategy claims *media_type*.
        ExtractionError
            The strategy failed, or fewer than ten meaningful characters
            came out.
        """
        normalized = _normalize_media_type(media_type)
        strategy = self._select(normalized)
        if strategy is None:
            raise UnsupportedMediaTypeError(media_type)

        text = await strategy.extract(data, normalized, source_locator, filename)
        if len(text.strip()) < MIN_MEANINGFUL_CHARS:
            raise ExtractionError(message="No meaningful text content found in document")

        logger.info(
            "content_extracted",
            strategy=strategy.name,
            media_type=normalized,
            chars=len(text),
        )
        return text

    def _select(self, media_type: str) -> ExtractionStrategy | None:
        for strategy in self._strategies:
            if strategy.handles(media_type):
                return strategy
        return None
