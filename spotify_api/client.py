import json
import logging
from typing import Any, Dict, List, Optional, Type

import httpx

from .auth import SpotifyPKCEAuth
from .errors import AuthError, FetchError, PlaybackError, SpotifyError
from .token_manager import TokenManager, Tokens

logger = logging.getLogger(__name__)

SPOTIFY_API_BASE_URL = "https://api.spotify.com/v1"


class SpotifyClient:
    """Thin async Spotify Web API client.

    Expects tokens obtained through SpotifyPKCEAuth. Listing helpers return
    *fully paged* lists. There is no retry loop: an expired access token is
    refreshed once, anything else is raised to the caller.
    """

    def __init__(
        self,
        auth: SpotifyPKCEAuth,
        tokens: Optional[Tokens] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.auth = auth
        self._tokens = tokens or auth.tokens
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=30.0)

    async def __aenter__(self) -> "SpotifyClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()

    # -----------------
    # Token management
    # -----------------

    @property
    def tokens(self) -> Optional[Tokens]:
        return self._tokens

    def set_tokens(self, tokens: Tokens) -> None:
        self._tokens = tokens

    async def refresh(self) -> Tokens:
        """Exchange the refresh token for a new access token (saved by the auth helper)."""
        if self._tokens is None or not self._tokens.refresh_token:
            raise AuthError("No refresh token available. Run the OAuth flow first.")

        self._tokens = await self.auth.refresh_access_token(refresh_token=self._tokens.refresh_token)
        logger.info("Refreshed Spotify access token")
        return self._tokens

    async def get_token(self) -> Tokens:
        if self._tokens is None:
            raise AuthError("No Spotify token available. Run the OAuth flow first.")

        if not TokenManager.is_expired(self._tokens):
            return self._tokens

        return await self.refresh()

    # -----------------
    # HTTP helpers
    # -----------------

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        error_cls: Type[SpotifyError] = FetchError,
        retry_401_refresh: bool = True,
    ) -> Dict[str, Any]:
        """Make a Spotify Web API request and return parsed JSON ({} for empty bodies).

        Failures are raised as ``error_cls``. A 401 triggers one token refresh
        and a single repeat of the request.
        """

        token = await self.get_token()
        url = path if path.startswith("http") else f"{SPOTIFY_API_BASE_URL}{path}"
        query = {k: str(v) for k, v in (params or {}).items() if v is not None}

        try:
            resp = await self.http_client.request(
                method.upper(),
                url,
                params=query or None,
                json=json_body,
                headers={
                    "Authorization": f"{token.token_type} {token.access_token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise error_cls(f"Spotify API request failed: {e}") from e

        if resp.status_code == 401 and retry_401_refresh:
            logger.info("Spotify API returned 401 for %s %s; refreshing token", method.upper(), path)
            await self.refresh()
            return await self.request_json(
                method,
                path,
                params=params,
                json_body=json_body,
                error_cls=error_cls,
                retry_401_refresh=False,
            )

        if resp.status_code >= 400:
            raise error_cls(f"Spotify API error {resp.status_code}: {resp.text}")

        body = resp.text
        if not body:
            return {}

        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            raise error_cls(f"Spotify API response was not JSON (status {resp.status_code}): {body}") from e

        return payload if isinstance(payload, dict) else {"items": payload}

    async def _paginate(self, path: str, *, params: Optional[Dict[str, Any]] = None, page_key: str = "items") -> List[Dict[str, Any]]:
        """Fetch all pages for an endpoint that returns {items, total, limit, offset}."""

        out: List[Dict[str, Any]] = []
        limit = int((params or {}).get("limit") or 50)
        offset = int((params or {}).get("offset") or 0)

        while True:
            page = await self.request_json("GET", path, params={**(params or {}), "limit": limit, "offset": offset})
            items = page.get(page_key) or []
            if isinstance(items, list):
                out.extend([x for x in items if isinstance(x, dict)])

            total = page.get("total")
            if total is None:
                break

            got = len(items) if isinstance(items, list) else 0
            offset += got
            if got <= 0 or offset >= int(total):
                break

        return out

    # -----------------
    # Endpoints used by the browser
    # -----------------

    async def current_user_playlists(self, *, limit: int = 50) -> List[Dict[str, Any]]:
        return await self._paginate("/me/playlists", params={"limit": min(50, int(limit))})

    async def playlist_items(self, playlist_id: str, *, limit: int = 100) -> List[Dict[str, Any]]:
        # Endpoint shape: {items: [{added_at, track: {...}}], total, ...}
        return await self._paginate(
            f"/playlists/{playlist_id}/tracks",
            params={"limit": min(100, int(limit)), "additional_types": "track,episode"},
        )

    async def devices(self) -> List[Dict[str, Any]]:
        payload = await self.request_json("GET", "/me/player/devices")
        devices = payload.get("devices") or []
        return [d for d in devices if isinstance(d, dict)]

    async def start_playback(self, uris: List[str], *, device_id: Optional[str] = None) -> None:
        """Start playback of ``uris`` on ``device_id`` (or the account's active device)."""
        await self.request_json(
            "PUT",
            "/me/player/play",
            params={"device_id": device_id} if device_id else None,
            json_body={"uris": list(uris)},
            error_cls=PlaybackError,
        )
