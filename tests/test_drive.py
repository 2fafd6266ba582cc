"""Tests for graph/drive.py DriveManager."""

from unittest.mock import MagicMock

import pytest

from graphsession.core.errors import GraphAPIError
from graphsession.graph.drive import SEARCH_SELECT, DriveItem, DriveManager

FILE_ITEM = {
    "id": "item-1",
    "name": "Quarterly Report.xlsx",
    "size": 2048,
    "webUrl": "https://onedrive.live.com/item-1",
    "lastModifiedDateTime": "2026-02-27T09:00:00Z",
    "file": {"mimeType": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"},
}

FOLDER_ITEM = {"id": "item-2", "name": "Reports", "folder": {"childCount": 3}}


@pytest.fixture
def mock_client() -> MagicMock:
    """Return a mock GraphClient."""
    return MagicMock()


@pytest.fixture
def drive(mock_client: MagicMock) -> DriveManager:
    return DriveManager(mock_client)


class TestDriveItem:
    """Tests for DriveItem.from_graph()."""

    def test_file(self) -> None:
        item = DriveItem.from_graph(FILE_ITEM)
        assert item.name == "Quarterly Report.xlsx"
        assert item.size == 2048
        assert not item.is_folder
        assert item.mime_type.endswith("sheet")

    def test_folder(self) -> None:
        item = DriveItem.from_graph(FOLDER_ITEM)
        assert item.is_folder
        assert item.size == 0
        assert item.mime_type is None


class TestSearch:
    """Tests for DriveManager.search()."""

    def test_search_paginates_and_maps(self, drive: DriveManager, mock_client: MagicMock) -> None:
        mock_client.paginate.return_value = [FILE_ITEM, FOLDER_ITEM]

        items = drive.search("report")

        assert [i.id for i in items] == ["item-1", "item-2"]
        mock_client.paginate.assert_called_once_with(
            "/me/drive/root/search(q='report')",
            params={"$select": SEARCH_SELECT},
            max_pages=None,
        )

    def test_query_is_escaped(self, drive: DriveManager, mock_client: MagicMock) -> None:
        """Quotes are doubled for OData and the literal is URL-encoded."""
        mock_client.paginate.return_value = []

        drive.search("Bob's plan", max_pages=1)

        endpoint = mock_client.paginate.call_args.args[0]
        assert endpoint == "/me/drive/root/search(q='Bob%27%27s%20plan')"

    @pytest.mark.parametrize("query", ["", "   "])
    def test_blank_query_makes_no_request(self, query: str, drive: DriveManager, mock_client: MagicMock) -> None:
        assert drive.search(query) == []
        mock_client.paginate.assert_not_called()


class TestThumbnails:
    """Tests for thumbnail listing and download."""

    def test_download_first_thumbnail(self, drive: DriveManager, mock_client: MagicMock) -> None:
        mock_client.get.return_value = {"value": [{"id": "0", "medium": {"url": "..."}}]}
        mock_client.get_bytes.return_value = b"\xff\xd8jpeg"

        assert drive.download_thumbnail("item-1", size="large") == b"\xff\xd8jpeg"
        mock_client.get.assert_called_once_with("/me/drive/items/item-1/thumbnails")
        mock_client.get_bytes.assert_called_once_with("/me/drive/items/item-1/thumbnails/0/large/content")

    def test_item_without_thumbnails(self, drive: DriveManager, mock_client: MagicMock) -> None:
        mock_client.get.return_value = {"value": []}

        assert drive.download_thumbnail("item-2") is None
        mock_client.get_bytes.assert_not_called()

    def test_missing_size_returns_none(self, drive: DriveManager, mock_client: MagicMock) -> None:
        mock_client.get.return_value = {"value": [{"id": "0"}]}
        mock_client.get_bytes.side_effect = GraphAPIError("not found", status_code=404)

        assert drive.download_thumbnail("item-1") is None

    def test_other_errors_propagate(self, drive: DriveManager, mock_client: MagicMock) -> None:
        mock_client.get.return_value = {"value": [{"id": "0"}]}
        mock_client.get_bytes.side_effect = GraphAPIError("forbidden", status_code=403)

        with pytest.raises(GraphAPIError):
            drive.download_thumbnail("item-1")

    def test_unknown_size_rejected(self, drive: DriveManager, mock_client: MagicMock) -> None:
        with pytest.raises(ValueError, match="thumbnail size"):
            drive.download_thumbnail("item-1", size="huge")
        mock_client.get.assert_not_called()
