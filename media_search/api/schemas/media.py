from typing import Any

from pydantic import Field, model_serializer

from media_search.utils.model_utils import CamelModel


class MediaItem(CamelModel):
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


class SearchMetadata(CamelModel):
    pit_id: str = Field(..., description="Cursor to send back as x-pit-id")
    search_after: list[Any] | None = Field(
        None, description="Continuation key to send back as x-search-after"
    )
    current_page: int = Field(..., description="Page number of this response")
    pit_reset: bool | None = Field(
        None,
        description="Set when the cursor sent by the caller was replaced. "
        "The caller must overwrite its stored cursor and treat this page as page 1.",
    )

    @model_serializer(mode="wrap")
    def _omit_unset_reset(self, handler) -> dict[str, Any]:
        data = handler(self)
        for key in ("pitReset", "pit_reset"):
            if key in data and data[key] is None:
                del data[key]
        return data


class SearchResponse(CamelModel):
    """
    One page of search results.

    ``has_more`` is true only when this page was full and the backend reports
    matches beyond everything returned so far in the walk.
    """

    items: list[MediaItem] = Field(default_factory=list)
    total: int = Field(..., description="Matches for the query (may be an estimate)")
    page: int = Field(..., description="Page number within the current walk")
    has_more: bool = Field(..., description="Whether another page can be fetched")
    metadata: SearchMetadata


class CreatePitRequest(CamelModel):
    keep_alive: str = Field("5m", description="Backend keep-alive, e.g. '5m'")


class CreatePitResponse(CamelModel):
    pit_id: str = Field(..., description="The new cursor id")
