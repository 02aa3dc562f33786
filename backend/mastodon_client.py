"""
Async Mastodon REST client (statuses, notifications, media).
"""

from typing import Optional, Sequence

import httpx

from errors import MastodonAPIError, TransientHTTPError
from schemas import Account, MediaAttachment, Notification, ReplyTree, Status

_TRANSIENT_STATUS = (429, 500, 502, 503, 504)


class MastodonClient:
    """Thin wrapper over the Mastodon API authenticated with a bearer token."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.access_token = access_token
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.access_token}"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self._headers(),
            transport=self._transport,
        )

    @staticmethod
    def _check(response: httpx.Response, ok: Sequence[int] = (200,)) -> None:
        if response.status_code in ok:
            return
        if response.status_code in _TRANSIENT_STATUS:
            raise TransientHTTPError(response.status_code, response.text)
        raise MastodonAPIError(response.status_code, response.text)

    async def verify_credentials(self) -> Account:
        async with self._client() as client:
            r = await client.get("/api/v1/accounts/verify_credentials")
        self._check(r)
        return Account.model_validate(r.json())

    async def get_status(self, status_id: str) -> Status:
        async with self._client() as client:
            r = await client.get(f"/api/v1/statuses/{status_id}")
        self._check(r)
        return Status.model_validate(r.json())

    async def get_reply_tree(self, status_id: str) -> ReplyTree:
        """Ancestors come back root-first, as Mastodon returns them."""
        async with self._client() as client:
            r = await client.get(f"/api/v1/statuses/{status_id}/context")
        self._check(r)
        return ReplyTree.model_validate(r.json())

    async def post_status(
        self,
        content: str,
        reply_to_id: Optional[str] = None,
        media_ids: Optional[list[str]] = None,
        visibility: Optional[str] = None,
        sensitive: bool = False,
    ) -> Status:
        data: dict = {"status": content}
        if reply_to_id:
            data["in_reply_to_id"] = reply_to_id
        if media_ids:
            data["media_ids"] = media_ids
        if visibility:
            data["visibility"] = visibility
        if sensitive:
            data["sensitive"] = True

        print(f"[mastodon] posting status len={len(content)} reply_to={reply_to_id} media={len(media_ids or [])}")
        async with self._client() as client:
            r = await client.post("/api/v1/statuses", json=data)
        self._check(r)
        return Status.model_validate(r.json())

    async def get_all_notifications(
        self,
        since_id: Optional[str] = None,
        types: Optional[Sequence[str]] = None,
        max_id: Optional[str] = None,
    ) -> list[Notification]:
        params: list[tuple[str, str]] = []
        if max_id:
            params.append(("max_id", max_id))
        if since_id:
            params.append(("since_id", since_id))
        for t in types or ():
            params.append(("types[]", t))

        async with self._client() as client:
            r = await client.get("/api/v1/notifications", params=params)
        self._check(r)
        return [Notification.model_validate(item) for item in r.json()]

    async def upload_image(self, image_data: bytes) -> MediaAttachment:
        print(f"[mastodon] uploading image size={len(image_data)}")
        async with self._client() as client:
            r = await client.post(
                "/api/v2/media",
                files={"file": ("image.png", image_data, "image/png")},
            )
        self._check(r, ok=(200, 202))
        media = MediaAttachment.model_validate(r.json())
        media.status = "uploaded" if r.status_code == 200 else "uploading"
        return media

    async def get_media(self, media_id: str) -> MediaAttachment:
        async with self._client() as client:
            r = await client.get(f"/api/v1/media/{media_id}")
        self._check(r, ok=(200, 206))
        media = MediaAttachment.model_validate(r.json())
        media.status = "uploaded" if r.status_code == 200 else "uploading"
        return media
