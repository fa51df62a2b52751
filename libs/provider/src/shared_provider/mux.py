import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """The video provider rejected a request or could not be reached"""


@dataclass(frozen=True)
class DirectUpload:
    id: str
    url: str


class MuxClient:
    def __init__(
            self,
            token_id: str,
            token_secret: str,
            base_url: str = "https://api.mux.com",
            timeout: float = 15.0,
            transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.client = httpx.AsyncClient(
            base_url=base_url,
            auth=(token_id, token_secret),
            timeout=timeout,
            transport=transport
        )

    async def close(self):
        await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Mux {method} {path} failed: {e}")
            raise ProviderError(str(e)) from e
        if response.status_code >= 400:
            logger.error(f"Mux {method} {path} returned {response.status_code}: {response.text[:500]}")
            raise ProviderError(f"Mux responded with {response.status_code}")
        if not response.content:
            return {}
        return response.json().get("data", {})

    async def create_direct_upload(
            self,
            passthrough: str,
            cors_origin: str = "*",
            subtitles_language: Optional[str] = None
    ) -> DirectUpload:
        asset_settings: dict[str, Any] = {
            "playback_policy": ["public"],
            "passthrough": passthrough,
        }
        if subtitles_language:
            asset_settings["input"] = [{
                "generated_subtitles": [{
                    "language_code": subtitles_language,
                    "name": f"{subtitles_language.upper()} CC",
                }]
            }]
        data = await self._request("POST", "/video/v1/uploads", json={
            "cors_origin": cors_origin,
            "new_asset_settings": asset_settings,
        })
        if not data.get("id") or not data.get("url"):
            raise ProviderError("Mux did not return an upload id and url")
        logger.info(f"Created direct upload {data['id']}")
        return DirectUpload(id=data["id"], url=data["url"])

    async def cancel_direct_upload(self, upload_id: str) -> None:
        await self._request("PUT", f"/video/v1/uploads/{upload_id}/cancel")
        logger.info(f"Cancelled direct upload {upload_id}")
