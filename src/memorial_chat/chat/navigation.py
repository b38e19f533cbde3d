"""
Citation navigation: what the source viewer shows for a clicked citation.

'open_citation' and 'open_source' turn a source's full text into a 'SourceView':
numbered lines, the cited range marked as highlighted, and the line the viewer
should scroll to. A citation whose bounds fall outside the document is not
highlighted at all; the view carries a callout instead and the full document is
shown for manual browsing.

Scrolling itself belongs to the renderer. 'scroll_offset' holds the centring
math so that every renderer places the first highlighted line the same way, and
'SCROLL_DELAY' is how long it waits for layout before scrolling.
"""

from loguru import logger
from pydantic import BaseModel, Field

from memorial_chat.chat.citations import Citation, SourceType
from memorial_chat.conversation_database.data_models.source import Source

SCROLL_DELAY = 0.3

OUT_OF_RANGE_TITLE = "Referenced excerpt from source"
OUT_OF_RANGE_TEXT = (
    "This content is referenced from the original document but cannot be precisely located in the current view."
)

SOURCE_ICONS: dict[str, str] = {
    SourceType.PDF: "/file-types/PDF.svg",
    SourceType.TEXT: "/file-types/TXT.png",
    SourceType.WEBSITE: "/file-types/WEB.svg",
    SourceType.YOUTUBE: "/file-types/MP3.png",
    SourceType.AUDIO: "/file-types/MP3.png",
    SourceType.DOC: "/file-types/DOC.png",
    SourceType.MULTIPLE_WEBSITES: "/file-types/WEB.svg",
    SourceType.COPIED_TEXT: "/file-types/TXT.png",
}


def source_icon(source_type: str) -> str:
    return SOURCE_ICONS.get(source_type, SOURCE_ICONS[SourceType.TEXT])


def split_lines(content: str) -> list[str]:
    """Split on '\\r\\n', '\\r' and '\\n' alike. Line numbers are the 1-based positions in the result."""
    return content.replace("\r\n", "\n").replace("\r", "\n").split("\n")


class SourceLine(BaseModel):
    number: int
    text: str
    highlighted: bool = False


class Callout(BaseModel):
    title: str = OUT_OF_RANGE_TITLE
    text: str = OUT_OF_RANGE_TEXT
    hint: str


class SourceView(BaseModel):
    """
    Everything the source viewer renders for one opened source.

    Attributes:
        source_id: The source being shown.
        title: Header title, taken from the citation when opened from one.
        icon: Icon path for the source type.
        lines: The full document, numbered from 1.
        has_content: False when the source has no text; 'lines' is then empty.
        is_line_number_out_of_range: The citation has line data the document cannot satisfy.
        callout: Explanation shown above the document when out of range.
        guide_open: Whether the summary accordion starts expanded.
        summary: Source guide text, when the ingestion pipeline produced one.
        url: Link shown in the guide; only websites have one.
        scroll_target: Line to centre once layout settles, 'None' for no scrolling.
    """

    source_id: str
    title: str
    source_type: str = SourceType.PDF
    icon: str
    lines: list[SourceLine] = Field(default_factory=list)
    has_content: bool = True
    is_line_number_out_of_range: bool = False
    callout: Callout | None = None
    guide_open: bool = False
    summary: str | None = None
    url: str | None = None
    scroll_target: int | None = None
    citation_id: int | None = None

    @property
    def highlighted_lines(self) -> list[int]:
        return [line.number for line in self.lines if line.highlighted]


def _numbered(lines: list[str], start: int = -1, end: int = -1) -> list[SourceLine]:
    return [
        SourceLine(number=number, text=text, highlighted=start > 0 and start <= number <= end)
        for number, text in enumerate(lines, start=1)
    ]


def _guide_fields(source: Source) -> dict:
    return {
        "summary": source.summary or None,
        "url": source.url if source.type == SourceType.WEBSITE else None,
    }


def open_citation(citation: Citation, source: Source | None) -> SourceView:
    """
    Build the view for a citation clicked in an answer.

    Without valid line data the document is shown unhighlighted with the guide
    expanded, exactly as if the source had been opened from the list. With line
    data beyond the end of the document, nothing is highlighted and a callout
    quotes the referenced range instead.
    """
    content = source.content if source else None
    view = SourceView(
        source_id=citation.source_id,
        title=citation.source_title,
        source_type=citation.source_type,
        icon=source_icon(citation.source_type),
        citation_id=citation.citation_id,
        **(_guide_fields(source) if source else {}),
    )
    if not content:
        logger.info(f"Citation {citation.citation_id}: source {citation.source_id} has no content to show")
        view.has_content = False
        view.guide_open = not citation.has_valid_lines
        return view

    lines = split_lines(content)
    if not citation.has_valid_lines:
        view.lines = _numbered(lines)
        view.guide_open = True
        return view

    start, end = citation.chunk_lines_from, citation.chunk_lines_to
    if start > len(lines) or end > len(lines):
        logger.warning(
            f"Citation {citation.citation_id}: lines {start}-{end} out of range for "
            f"source {citation.source_id} with {len(lines)} lines"
        )
        view.lines = _numbered(lines)
        view.is_line_number_out_of_range = True
        view.callout = Callout(
            hint=f"The AI referenced lines {start}-{end} from the original document. "
            "You can browse the full source content below."
        )
        return view

    view.lines = _numbered(lines, start, end)
    view.scroll_target = start
    return view


def open_source(source: Source) -> SourceView:
    """Build the view for a source opened from the source list: no highlight, guide expanded."""
    lines = split_lines(source.content) if source.content else []
    return SourceView(
        source_id=source.id,
        title=source.title,
        source_type=source.type,
        icon=source_icon(source.type),
        lines=_numbered(lines),
        has_content=bool(lines),
        guide_open=True,
        **_guide_fields(source),
    )


def scroll_offset(line_top: float, line_height: float, viewport_height: float) -> float:
    """Scroll position that puts a line of height 'line_height' at 'line_top' in the middle of the viewport."""
    return max(0.0, line_top - viewport_height / 2 + line_height / 2)
