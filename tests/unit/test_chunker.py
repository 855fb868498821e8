"""Unit tests for the DocumentChunker — page-aware sentence chunking."""

from __future__ import annotations

import pytest

from docmem.services.ingestion.chunker import (
    INLINE_UPLOAD_MAX_CHARS,
    DocumentChunker,
    estimate_tokens,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_PROSE = (
    "Dr. Smith opened the meeting at nine. The team reviewed the roadmap! "
    "Was the deadline realistic? Everyone agreed to revisit it next week. "
    "Mr. Jones took notes, e.g. action items and owners. "
    "The session ended early"
)


def _make_chunker(max_tokens: int = 1000) -> DocumentChunker:
    return DocumentChunker(max_tokens=max_tokens)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestSmallDocuments:
    def test_short_text_is_one_chunk_on_page_one(self) -> None:
        text = "A fifty character plain text document for tests.."
        drafts = _make_chunker().chunk(text)

        assert len(drafts) == 1
        assert drafts[0].chunk_index == 0
        assert drafts[0].page == 1
        assert drafts[0].content == text.strip()

    def test_blank_text_yields_no_chunks(self) -> None:
        assert _make_chunker().chunk("") == []
        assert _make_chunker().chunk("   \n\t ") == []

    def test_non_positive_budget_rejected(self) -> None:
        with pytest.raises(ValueError):
            _make_chunker().chunk("Some text.", max_chars=0)

    def test_default_budget_is_tokens_times_four(self) -> None:
        assert _make_chunker(max_tokens=1000).default_max_chars == 4000
        assert INLINE_UPLOAD_MAX_CHARS == 4000


class TestPages:
    def test_three_pages_with_long_middle_page(self) -> None:
        page2 = "First long sentence on page two fills space. " * 3 + "Second half is here too. " * 3
        text = (
            "\n\nPage 1:\nShort first page."
            f"\n\nPage 2:\n{page2}"
            "\n\nPage 3:\nShort last page."
        )
        budget = len(page2.strip()) // 2 + 20

        drafts = _make_chunker().chunk(text, max_chars=budget)

        assert len(drafts) == 4
        assert [d.chunk_index for d in drafts] == [0, 1, 2, 3]
        assert [d.page for d in drafts] == [1, 2, 2, 3]
        assert drafts[0].content == "Short first page."
        assert drafts[3].content == "Short last page."

    def test_text_before_first_marker_is_page_one(self) -> None:
        text = "Cover sheet text.\n\nPage 2:\nBody of page two."
        drafts = _make_chunker().chunk(text)

        assert [(d.page, d.content) for d in drafts] == [
            (1, "Cover sheet text."),
            (2, "Body of page two."),
        ]

    def test_empty_pages_are_skipped_without_gaps(self) -> None:
        text = "\n\nPage 1:\nAlpha text.\n\nPage 2:\n   \n\nPage 3:\nGamma text."
        drafts = _make_chunker().chunk(text)

        assert [d.chunk_index for d in drafts] == [0, 1]
        assert [d.page for d in drafts] == [1, 3]


class TestSentenceIntegrity:
    def test_boundaries_fall_between_sentences(self) -> None:
        drafts = _make_chunker().chunk(_PROSE, max_chars=80)

        assert len(drafts) > 1
        for draft in drafts[:-1]:
            assert draft.content[-1] in ".!?"
        # Abbreviations do not start a new sentence.
        assert not any(d.content.startswith("Smith") for d in drafts)
        assert not any(d.content.startswith("Jones") for d in drafts)

    def test_chunks_respect_budget(self) -> None:
        drafts = _make_chunker().chunk(_PROSE, max_chars=80)
        for draft in drafts:
            assert len(draft.content) <= 80

    def test_oversized_sentence_is_kept_whole(self) -> None:
        long_sentence = "word " * 40 + "end."
        text = f"Short one. {long_sentence} Another short one."
        drafts = _make_chunker().chunk(text, max_chars=50)

        assert long_sentence.strip() in [d.content for d in drafts]

    def test_concatenation_preserves_words(self) -> None:
        drafts = _make_chunker().chunk(_PROSE, max_chars=80)
        rebuilt = " ".join(d.content for d in drafts)
        assert rebuilt.split() == _PROSE.split()


class TestDeterminism:
    def test_same_input_same_output(self) -> None:
        chunker = _make_chunker()
        text = "\n\nPage 1:\n" + _PROSE + "\n\nPage 2:\n" + _PROSE
        first = chunker.chunk(text, max_chars=90)
        second = chunker.chunk(text, max_chars=90)

        assert [d.model_dump() for d in first] == [d.model_dump() for d in second]

    def test_ordinals_are_contiguous(self) -> None:
        text = "".join(f"\n\nPage {n}:\n{_PROSE}" for n in range(1, 6))
        drafts = _make_chunker().chunk(text, max_chars=70)

        assert [d.chunk_index for d in drafts] == list(range(len(drafts)))


class TestTokenEstimate:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [("", 0), ("abcd", 1), ("abcde", 2), ("x" * 4000, 1000)],
    )
    def test_estimate_tokens(self, text: str, expected: int) -> None:
        assert estimate_tokens(text) == expected

    def test_draft_token_count_matches_estimate(self) -> None:
        draft = _make_chunker().chunk(_PROSE)[0]
        assert draft.token_count == estimate_tokens(draft.content)
