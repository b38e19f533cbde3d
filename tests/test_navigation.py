"""Tests for the source viewer built from a clicked citation."""

import pytest

from memorial_chat.chat.citations import Citation
from memorial_chat.chat.navigation import (
    OUT_OF_RANGE_TEXT,
    open_citation,
    open_source,
    scroll_offset,
    source_icon,
    split_lines,
)
from memorial_chat.conversation_database.data_models.source import Source

LONG_CONTENT = "\n".join(f"dòng {number}" for number in range(1, 201))


def citation(**lines) -> Citation:
    return Citation(citation_id=1, source_id="s1", source_title="Tiểu sử", source_type="text", **lines)


@pytest.fixture
def long_source() -> Source:
    return Source(id="s1", notebook_id="nb", title="Tiểu sử", type="text", content=LONG_CONTENT, summary="Tóm tắt")


class TestSplitLines:
    """Tests for line splitting."""

    def test_mixed_line_endings(self):
        """CRLF, CR and LF all end a line."""
        assert split_lines("a\r\nb\rc\nd") == ["a", "b", "c", "d"]

    def test_trailing_newline_gives_empty_last_line(self):
        """A trailing newline counts as one more, empty, line."""
        assert split_lines("a\n") == ["a", ""]


class TestOpenCitation:
    """Tests for highlighting, out-of-range handling and guide state."""

    def test_highlights_cited_range(self, long_source):
        """Lines within the bounds are highlighted and the view scrolls to the first."""
        view = open_citation(citation(chunk_lines_from=10, chunk_lines_to=12), long_source)
        assert view.highlighted_lines == [10, 11, 12]
        assert view.scroll_target == 10
        assert not view.is_line_number_out_of_range
        assert not view.guide_open
        assert len(view.lines) == 200

    def test_out_of_range(self, long_source):
        """Bounds past the end show the callout and highlight nothing."""
        view = open_citation(citation(chunk_lines_from=500, chunk_lines_to=510), long_source)
        assert view.is_line_number_out_of_range
        assert view.highlighted_lines == []
        assert view.scroll_target is None
        assert view.callout.text == OUT_OF_RANGE_TEXT
        assert "lines 500-510" in view.callout.hint
        assert len(view.lines) == 200

    def test_end_bound_out_of_range(self, long_source):
        """An end bound past the document is out of range even when the start fits."""
        view = open_citation(citation(chunk_lines_from=199, chunk_lines_to=201), long_source)
        assert view.is_line_number_out_of_range
        assert view.highlighted_lines == []

    def test_no_line_data(self, long_source):
        """Without chunk_lines_from the document is unhighlighted with the guide open."""
        view = open_citation(citation(chunk_lines_to=5), long_source)
        assert view.highlighted_lines == []
        assert view.guide_open
        assert not view.is_line_number_out_of_range
        assert view.summary == "Tóm tắt"

    def test_zero_start_is_not_valid(self, long_source):
        """A start bound of 0 is not valid line data."""
        view = open_citation(citation(chunk_lines_from=0, chunk_lines_to=3), long_source)
        assert view.highlighted_lines == []
        assert view.guide_open

    def test_missing_source(self):
        """A citation whose source is gone yields an empty view instead of an error."""
        view = open_citation(citation(chunk_lines_from=1, chunk_lines_to=2), None)
        assert not view.has_content
        assert view.lines == []

    def test_url_only_for_websites(self, long_source):
        """The guide link is shown only for website sources."""
        long_source.url = "https://example.org/bai-viet"
        assert open_citation(citation(), long_source).url is None

        website = long_source.model_copy(update={"type": "website"})
        assert open_source(website).url == "https://example.org/bai-viet"


class TestOpenSource:
    """Tests for opening a source from the list."""

    def test_guide_open_no_highlight(self, long_source):
        """A source opened from the list is unhighlighted with the guide expanded."""
        view = open_source(long_source)
        assert view.guide_open
        assert view.highlighted_lines == []
        assert view.scroll_target is None
        assert view.title == "Tiểu sử"


class TestPresentationHelpers:
    """Tests for icon lookup and scroll centring."""

    @pytest.mark.parametrize(
        "source_type, icon",
        [("pdf", "/file-types/PDF.svg"), ("youtube", "/file-types/MP3.png"), ("unknown", "/file-types/TXT.png")],
    )
    def test_source_icon(self, source_type, icon):
        """Known types map to their icon and unknown types fall back to text."""
        assert source_icon(source_type) == icon

    def test_scroll_offset_centres_line(self):
        """The line's middle lands in the middle of the viewport."""
        assert scroll_offset(line_top=1000, line_height=40, viewport_height=600) == 720

    def test_scroll_offset_clamped(self):
        """Lines near the top never produce a negative offset."""
        assert scroll_offset(line_top=50, line_height=20, viewport_height=600) == 0
