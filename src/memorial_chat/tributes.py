"""
Guestbook ('tri ân') logic shared by the API and any other writer.

'prepare_tribute' validates and normalises a submission into a 'NewTribute'.
'TributeCard.from_tribute' turns a stored row into what the tribute grid
renders: the card kind is derived from which of image and text are present,
and the date is shown in Vietnam time.
"""

from enum import StrEnum

from loguru import logger
from pydantic import BaseModel, Field

from memorial_chat.conversation_database.data_models.tribute import NewTribute, Tribute
from memorial_chat.exceptions import TributeValidationError
from memorial_chat.utils.time import VIETNAM_OFFSET_HOURS, format_vietnam_date

DEFAULT_TRIBUTE_NAME = "Tưởng nhớ"
CONTENT_REQUIRED = "Nội dung hoặc ảnh là bắt buộc"
TRIBUTE_THANKS = "Cảm ơn bạn! Lời tri ân của bạn đã được ghi nhận."


class TributeKind(StrEnum):
    STORY = "story"
    IMAGE = "image"
    TEXT = "text"


class TributeInput(BaseModel):
    """A guestbook submission as posted by the visitor. Every field is optional."""

    name: str | None = None
    position: str | None = None
    contents: str | None = None
    image_url: str | None = None


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def prepare_tribute(submission: TributeInput, default_name: str = DEFAULT_TRIBUTE_NAME) -> NewTribute:
    """
    Validate and normalise a submission.

    Text fields are trimmed and blank ones dropped; a blank name becomes
    'default_name'. Raises 'TributeValidationError' when neither text nor an
    image remains.
    """
    contents = _clean(submission.contents)
    image_url = submission.image_url or None
    if not contents and not image_url:
        raise TributeValidationError(CONTENT_REQUIRED)
    return NewTribute(
        name=_clean(submission.name) or default_name,
        position=_clean(submission.position),
        contents=contents,
        image_url=image_url,
    )


def tribute_kind(tribute: Tribute) -> TributeKind:
    has_image = bool(tribute.image_url)
    has_content = bool(tribute.contents and tribute.contents.strip())
    if has_image and has_content:
        return TributeKind.STORY
    if has_image:
        return TributeKind.IMAGE
    return TributeKind.TEXT


class TributeCard(BaseModel):
    id: str
    kind: TributeKind
    author_name: str
    organization: str = ""
    date: str
    content: str | None = None
    image: str | None = None
    caption: str | None = None
    aspect_ratio: str = "square"

    @classmethod
    def from_tribute(
        cls,
        tribute: Tribute,
        default_name: str = DEFAULT_TRIBUTE_NAME,
        offset_hours: int = VIETNAM_OFFSET_HOURS,
    ) -> "TributeCard":
        return cls(
            id=tribute.id,
            kind=tribute_kind(tribute),
            author_name=tribute.name or default_name,
            organization=tribute.position or "",
            date=format_vietnam_date(tribute.created_at, offset_hours),
            content=tribute.contents or None,
            image=tribute.image_url or None,
            caption=tribute.name or None,
        )


def tribute_cards(tributes: list[Tribute], **kwargs) -> list[TributeCard]:
    return [TributeCard.from_tribute(tribute, **kwargs) for tribute in tributes]


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool = Field(serialization_alias="hasMore")


class TributePage(BaseModel):
    """One page of the guestbook, newest first."""

    data: list[Tribute]
    pagination: Pagination

    @classmethod
    def build(cls, rows: list[Tribute], total: int, limit: int, offset: int) -> "TributePage":
        logger.debug(f"Tribute page offset={offset} limit={limit}: {len(rows)} of {total}")
        return cls(
            data=rows,
            pagination=Pagination(total=total, limit=limit, offset=offset, has_more=total > offset + limit),
        )
