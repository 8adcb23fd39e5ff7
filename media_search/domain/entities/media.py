from enum import Enum

from pydantic import Field

from media_search.domain.entities.cursors import ContinuationKey
from media_search.utils.model_utils import BaseModel


class MediaType(str, Enum):
    STOCK = "st"
    SPORT = "sp"


class MediaItemEntity(BaseModel):
    """
    A single press-photo record as stored in the search index.

    Field names follow the index mapping. ``url`` is derived by the search
    adapter from ``db`` and ``bildnummer`` and is ``None`` when the record
    has no image number.
    """

    id: str = Field(..., description="Document id in the index")
    bildnummer: str | None = Field(None, description="Image number")
    datum: str | None = Field(None, description="Date the picture was taken")
    suchtext: str | None = Field(None, description="Searchable caption text")
    fotografen: str | None = Field(None, description="Photographer credit")
    hoehe: str | None = Field(None, description="Height in pixels")
    breite: str | None = Field(None, description="Width in pixels")
    db: str | None = Field(None, description="Collection the record belongs to")
    description: str | None = Field(None, description="Optional long description")
    url: str | None = Field(None, description="Image URL")

    @property
    def is_renderable(self) -> bool:
        return bool(self.bildnummer and self.bildnummer.strip())


class BackendPage(BaseModel):
    """One page as returned by a search backend."""

    items: list[MediaItemEntity] = Field(default_factory=list)
    total: int = Field(0, description="Backend match count for the whole query")
    continuation_key: ContinuationKey | None = Field(
        None, description="Sort values of the last hit on this page"
    )
    cursor_id: str = Field(..., description="Latest cursor id issued by the backend")


class PageResultEntity(BaseModel):
    """A page shaped for callers, with continuation metadata."""

    items: list[MediaItemEntity] = Field(default_factory=list)
    total: int
    page: int
    has_more: bool
    cursor_id: str
    continuation_key: ContinuationKey | None = None
    reset: bool = False
