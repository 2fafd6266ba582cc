"""Microsoft Graph API client module.

Provides:
- Base client that attaches a just-in-time bearer token to every request
- OneDrive search and thumbnail download

Usage:
    from graphsession.graph import DriveManager, GraphClient

    client = GraphClient(engine)
    drive = DriveManager(client)
    items = drive.search("budget")
"""

from graphsession.graph.client import GraphClient
from graphsession.graph.drive import DriveItem, DriveManager

__all__ = [
    "DriveItem",
    "DriveManager",
    "GraphClient",
]
