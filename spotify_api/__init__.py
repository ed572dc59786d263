"""Spotify Web API integration (OAuth PKCE + loopback callback).

Used by menus/ (the two-panel library browser) and main.py (startup
authentication).
"""

from .auth import SpotifyPKCEAuth
from .callback_server import CallbackHandshake, authenticate
from .client import SpotifyClient
from .data_loader import DeviceEntry, PlaylistEntry, SpotifyDataLoader, TrackEntry
from .errors import AuthError, FetchError, PlaybackError, SpotifyError
from .token_manager import TokenManager, Tokens

__all__ = [
    "AuthError",
    "CallbackHandshake",
    "DeviceEntry",
    "FetchError",
    "PlaybackError",
    "PlaylistEntry",
    "SpotifyClient",
    "SpotifyDataLoader",
    "SpotifyError",
    "SpotifyPKCEAuth",
    "TokenManager",
    "Tokens",
    "TrackEntry",
    "authenticate",
]
