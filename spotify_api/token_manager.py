import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from platformdirs import user_config_dir

logger = logging.getLogger(__name__)

APP_NAME = "playlist-remote"

DEFAULT_TOKEN_CACHE_PATH = os.path.join(user_config_dir(APP_NAME), "tokens.json")


@dataclass(frozen=True)
class Tokens:
    """Access/refresh token pair for the authenticated session.

    Only ``access_token`` and ``refresh_token`` are persisted. ``expires_at``
    lives in memory so the client can refresh before the API rejects the
    access token; a token loaded from disk starts out as expired.
    """

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_at: float = 0.0

    @staticmethod
    def from_spotify_token_response(
        payload: Dict[str, Any],
        *,
        previous_refresh_token: Optional[str] = None,
        now: Optional[float] = None,
    ) -> "Tokens":
        """Convert Spotify token response JSON into Tokens.

        Spotify may omit refresh_token on refresh; the previous one is kept.
        """

        now_ts = float(time.time() if now is None else now)
        expires_in = float(payload.get("expires_in", 0) or 0)

        return Tokens(
            access_token=str(payload.get("access_token", "")),
            refresh_token=str(payload.get("refresh_token") or previous_refresh_token or ""),
            token_type=str(payload.get("token_type", "Bearer")),
            expires_at=now_ts + expires_in,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
        }


class TokenManager:
    """Reads and writes the JSON credential file."""

    def __init__(self, *, cache_path: str = DEFAULT_TOKEN_CACHE_PATH):
        self.cache_path = cache_path

    def should_cache(self, config: Dict[str, Any]) -> bool:
        return bool((config or {}).get("spotify_cache_tokens", True))

    def ensure_cache_dir(self) -> None:
        os.makedirs(os.path.dirname(self.cache_path) or ".", exist_ok=True)

    def load(self, config: Dict[str, Any]) -> Optional[Tokens]:
        """Load stored tokens if caching is enabled and the file is usable."""
        if not self.should_cache(config):
            return None

        if not os.path.exists(self.cache_path):
            return None

        try:
            with open(self.cache_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable token file %s: %s", self.cache_path, e)
            return None

        if not isinstance(data, dict):
            logger.warning("Ignoring token file %s: not a JSON object", self.cache_path)
            return None

        access_token = str(data.get("access_token") or "")
        refresh_token = str(data.get("refresh_token") or "")
        if not access_token or not refresh_token:
            logger.warning("Ignoring token file %s: missing access_token/refresh_token", self.cache_path)
            return None

        return Tokens(access_token=access_token, refresh_token=refresh_token)

    def save(self, config: Dict[str, Any], tokens: Tokens) -> bool:
        """Persist tokens to disk if enabled."""
        if not self.should_cache(config):
            return False

        try:
            self.ensure_cache_dir()
            with open(self.cache_path, "w", encoding="utf-8") as f:
                json.dump(tokens.to_dict(), f, indent=2)
        except OSError as e:
            logger.error("Failed to save tokens to %s: %s", self.cache_path, e)
            return False

        logger.debug("Saved tokens to %s", self.cache_path)
        return True

    @staticmethod
    def is_expired(tokens: Tokens, *, skew_seconds: int = 60) -> bool:
        return time.time() >= float(tokens.expires_at) - float(skew_seconds)
