"""OneDrive search and thumbnail download.

Usage:
    from graphsession.graph.drive import DriveManager

    drive = DriveManager(client)
    for item in drive.search("quarterly report"):
        thumbnail = drive.download_thumbnail(item.id)
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from graphsession.core.errors import GraphAPIError
from graphsession.core.logging import get_logger

if TYPE_CHECKING:
    from graphsession.graph.client import GraphClient

logger = get_logger(__name__)

THUMBNAIL_SIZES = ("small", "medium", "large")

SEARCH_SELECT = "id,name,size,webUrl,lastModifiedDateTime,file,folder"


@dataclass(frozen=True, slots=True)
class DriveItem:
    """A file or folder returned by a drive search."""

    id: str
    name: str
    size: int = 0
    web_url: str | None = None
    last_modified: str | None = None
    is_folder: bool = False
    mime_type: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_graph(cls, item: dict[str, Any]) -> "DriveItem":
        return cls(
            id=item["id"],
            name=item.get("name", ""),
            size=item.get("size", 0) or 0,
            web_url=item.get("webUrl"),
            last_modified=item.get("lastModifiedDateTime"),
            is_folder="folder" in item,
            mime_type=(item.get("file") or {}).get("mimeType"),
            raw=item,
        )


class DriveManager:
    """Read-only OneDrive operations for the signed-in user.

    Attributes:
        client: GraphClient instance for API calls
    """

    def __init__(self, client: "GraphClient"):
        self.client = client

    def search(self, query: str, max_pages: int | None = None) -> list[DriveItem]:
        """Search the user's drive by name and content.

        Args:
            query: Free-text search; blank queries return no results
            max_pages: Stop after this many result pages

        Returns:
            Matching items in the order Graph ranks them
        """
        query = query.strip()
        if not query:
            return []

        # OData string literal: single quotes are escaped by doubling
        escaped = quote(query.replace("'", "''"), safe="")
        items = self.client.paginate(
            f"/me/drive/root/search(q='{escaped}')",
            params={"$select": SEARCH_SELECT},
            max_pages=max_pages,
        )

        logger.info("Drive search complete", result_count=len(items))
        return [DriveItem.from_graph(item) for item in items]

    def list_thumbnails(self, item_id: str) -> list[dict[str, Any]]:
        """List the thumbnail sets of an item (usually zero or one)."""
        response = self.client.get(f"/me/drive/items/{item_id}/thumbnails")
        return response.get("value", [])

    def download_thumbnail(self, item_id: str, size: str = "medium") -> bytes | None:
        """Download the first thumbnail of an item.

        Args:
            item_id: Drive item ID
            size: One of 'small', 'medium', 'large'

        Returns:
            Image bytes, or None when the item has no thumbnail

        Raises:
            ValueError: If size is not a known thumbnail size
        """
        if size not in THUMBNAIL_SIZES:
            raise ValueError(f"Unknown thumbnail size '{size}', expected one of {THUMBNAIL_SIZES}")

        thumbnails = self.list_thumbnails(item_id)
        if not thumbnails:
            return None

        thumbnail_id = thumbnails[0].get("id", "0")
        try:
            return self.client.get_bytes(
                f"/me/drive/items/{item_id}/thumbnails/{thumbnail_id}/{size}/content"
            )
        except GraphAPIError as e:
            if e.status_code == 404:
                logger.debug("Thumbnail size not available", item_id=item_id, size=size)
                return None
            raise
