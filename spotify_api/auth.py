import base64
import hashlib
import json
import logging
import secrets
import urllib.parse
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .errors import AuthError
from .token_manager import TokenManager, Tokens

logger = logging.getLogger(__name__)

SPOTIFY_ACCOUNTS_BASE_URL = "https://accounts.spotify.com"

DEFAULT_REDIRECT_URI = "http://127.0.0.1:8888/callback"

DEFAULT_SCOPES: List[str] = [
    "user-read-private",
    "user-read-email",
    "playlist-read-private",
    "playlist-read-collaborative",
    "user-library-read",
    "user-modify-playback-state",
    "user-read-currently-playing",
    "user-read-playback-state",
]


def _base64url_no_pad(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def code_challenge_from_verifier(verifier: str) -> str:
    """Compute PKCE S256 code_challenge from code_verifier."""

    digest = hashlib.sha256((verifier or "").encode("utf-8")).digest()
    return _base64url_no_pad(digest)


@dataclass(frozen=True)
class PKCEPair:
    code_verifier: str
    code_challenge: str


class SpotifyPKCEAuth:
    """Spotify OAuth (Authorization Code + PKCE) helper.

    Holds the in-progress flow (verifier, state) and the most recently
    obtained tokens. When a client secret is configured it is sent as HTTP
    basic auth on token requests alongside the PKCE verifier.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        *,
        token_manager: Optional[TokenManager] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.client_id = str(client_id or "").strip()
        self.client_secret = str(client_secret or "").strip() or None
        self.config = config or {}
        self.token_manager = token_manager
        self.http_client = http_client
        self.tokens: Optional[Tokens] = None
        self._pkce: Optional[PKCEPair] = None
        self._state: Optional[str] = None

    @property
    def redirect_uri(self) -> str:
        return str(self.config.get("spotify_redirect_uri") or DEFAULT_REDIRECT_URI).strip()

    @property
    def scopes(self) -> List[str]:
        return list(self.config.get("spotify_scopes") or DEFAULT_SCOPES)

    @property
    def state(self) -> Optional[str]:
        return self._state

    @staticmethod
    def generate_pkce_pair() -> PKCEPair:
        """Generate a PKCE verifier + challenge."""

        # RFC 7636: verifier length 43-128 chars, characters from ALPHA / DIGIT / "-" / "." / "_" / "~"
        verifier = secrets.token_urlsafe(64).rstrip("=")
        verifier = verifier[:128]
        if len(verifier) < 43:
            verifier = (verifier + secrets.token_urlsafe(64)).rstrip("=")[:43]

        challenge = code_challenge_from_verifier(verifier)
        return PKCEPair(code_verifier=verifier, code_challenge=challenge)

    def get_authorize_url(
        self,
        *,
        code_challenge: str,
        state: Optional[str] = None,
        scopes: Optional[Iterable[str]] = None,
        show_dialog: bool = False,
    ) -> str:
        if not self.client_id:
            raise ValueError("Missing Spotify client id")
        if not self.redirect_uri:
            raise ValueError("Missing spotify_redirect_uri")

        scope_list = list(scopes if scopes is not None else self.scopes)
        scope_str = " ".join([str(s).strip() for s in scope_list if str(s).strip()])

        params: Dict[str, str] = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "code_challenge_method": "S256",
            "code_challenge": str(code_challenge),
            "show_dialog": "true" if show_dialog else "false",
        }
        if scope_str:
            params["scope"] = scope_str
        if state:
            params["state"] = str(state)

        return f"{SPOTIFY_ACCOUNTS_BASE_URL}/authorize?{urllib.parse.urlencode(params)}"

    def begin_oauth_flow(self, *, show_dialog: bool = False) -> str:
        """Start a new PKCE flow and return the authorize URL.

        The verifier and state are kept on the instance for the code exchange.
        """

        self._pkce = self.generate_pkce_pair()
        self._state = secrets.token_urlsafe(16).rstrip("=")
        return self.get_authorize_url(
            code_challenge=self._pkce.code_challenge,
            state=self._state,
            show_dialog=show_dialog,
        )

    async def exchange_code_for_token(self, *, code: str, code_verifier: Optional[str] = None) -> Tokens:
        verifier = code_verifier or (self._pkce.code_verifier if self._pkce else None)
        if not verifier:
            raise AuthError("No PKCE verifier available; start the OAuth flow first.")

        payload = await self._post_form(
            f"{SPOTIFY_ACCOUNTS_BASE_URL}/api/token",
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
                "client_id": self.client_id,
                "code_verifier": verifier,
            },
        )
        tokens = Tokens.from_spotify_token_response(payload)
        if not tokens.access_token or not tokens.refresh_token:
            raise AuthError(f"Spotify token exchange returned no usable tokens: {payload}")

        self._store(tokens)
        return tokens

    async def refresh_access_token(self, *, refresh_token: str) -> Tokens:
        payload = await self._post_form(
            f"{SPOTIFY_ACCOUNTS_BASE_URL}/api/token",
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.client_id,
            },
        )

        tokens = Tokens.from_spotify_token_response(payload, previous_refresh_token=refresh_token)
        if not tokens.access_token:
            raise AuthError(f"Spotify token refresh failed: {payload}")

        self._store(tokens)
        return tokens

    def _store(self, tokens: Tokens) -> None:
        self.tokens = tokens
        if self.token_manager is not None:
            self.token_manager.save(self.config, tokens)

    async def _post_form(self, url: str, form: Dict[str, Any]) -> Dict[str, Any]:
        data = {k: str(v) for k, v in (form or {}).items() if v is not None}
        auth = (self.client_id, self.client_secret) if self.client_secret else None

        try:
            if self.http_client is not None:
                resp = await self.http_client.post(url, data=data, auth=auth)
            else:
                async with httpx.AsyncClient(timeout=30.0, follow_redirects=False) as client:
                    resp = await client.post(url, data=data, auth=auth)
        except httpx.HTTPError as e:
            raise AuthError(f"Spotify token request failed: {e}") from e

        if resp.status_code >= 400:
            raise AuthError(f"Spotify token request failed (HTTP {resp.status_code}): {resp.text}")

        try:
            payload = resp.json()
        except json.JSONDecodeError as e:
            raise AuthError(f"Spotify token response was not JSON: {resp.text}") from e

        if not isinstance(payload, dict):
            raise AuthError(f"Spotify token response was not an object: {payload}")

        return payload
