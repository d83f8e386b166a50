"""
GoogleDriveConnector — recent files from Google Drive.

Provider slug is ``google``: one Google connection covers Gmail, Calendar
and Drive.  The stored ``scopes`` string is the scope list Google granted;
a connection made before Drive access was requested lacks it and must be
re-authorised.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from connectors.base import BaseConnector
from connectors.errors import ReauthRequired
from connectors.normalize import iso
from connectors.schemas import DriveFile, ProviderSummary

logger = logging.getLogger(__name__)

_FILES_URL = "https://www.googleapis.com/drive/v3/files"
_FIELDS = "files(id,name,mimeType,webViewLink,iconLink,modifiedTime,size)"


class GoogleDriveConnector(BaseConnector):
    category = "storage"

    def __init__(self, page_size: int = 10) -> None:
        self.page_size = page_size

    @property
    def provider_name(self) -> str:
        return "google"

    @property
    def display_name(self) -> str:
        return "Google Drive"

    async def fetch(
        self,
        access_token: str,
        scoped_id: Optional[str],
        client: httpx.AsyncClient,
    ) -> ProviderSummary:
        if "drive" not in (scoped_id or ""):
            raise ReauthRequired("Drive access not granted, reconnect Google", provider=self.provider_name)

        data = await self.get_json(
            client, _FILES_URL, access_token,
            params={
                "q": "trashed=false",
                "fields": _FIELDS,
                "orderBy": "modifiedTime desc",
                "pageSize": self.page_size,
            },
        )

        files = [
            DriveFile(
                id=f.get("id"),
                name=f.get("name") or "Untitled",
                mime_type=f.get("mimeType"),
                web_view_link=f.get("webViewLink"),
                icon_link=f.get("iconLink"),
                modified_time=iso(f.get("modifiedTime")),
                size=int(f["size"]) if f.get("size") else None,
            )
            for f in (data or {}).get("files") or []
        ]
        logger.info("Drive files received: %d", len(files))

        return ProviderSummary(
            provider=self.display_name,
            category=self.category,
            connected_account=self.display_name,
            files=files,
        )
