import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .client import SpotifyClient

logger = logging.getLogger(__name__)

_CATALOG_ID_RE = re.compile(r"^[0-9A-Za-z]+$")


@dataclass(frozen=True)
class PlaylistEntry:
    display_name: str
    id: str


@dataclass(frozen=True)
class TrackEntry:
    display_name: str
    playable_uri: str


@dataclass(frozen=True)
class DeviceEntry:
    id: str
    name: str
    type: str = ""
    is_active: bool = False


def catalog_id(reference: str) -> str:
    """Return the bare catalog id of a Spotify reference.

    ``"spotify:playlist:xyz123"`` and ``"xyz123"`` both give ``"xyz123"``.
    """

    return str(reference or "").strip().split(":")[-1]


def parse_catalog_id(reference: str) -> str:
    """Like catalog_id() but raises ValueError unless the id is base-62."""

    cid = catalog_id(reference)
    if not _CATALOG_ID_RE.match(cid):
        raise ValueError(f"Invalid Spotify id: {reference!r}")
    return cid


def track_uri(track_id: str) -> str:
    return f"spotify:track:{track_id}"


class SpotifyDataLoader:
    """Turns raw Spotify listings into the entries shown by the browser.

    Every listing is drained completely by the client before normalization,
    so callers always get one ordered list.
    """

    def __init__(self, client: SpotifyClient):
        self.client = client

    async def list_playlists(self) -> List[PlaylistEntry]:
        playlists: List[PlaylistEntry] = []
        for p in await self.client.current_user_playlists():
            entry = self._normalize_playlist(p)
            if entry is not None:
                playlists.append(entry)
        return playlists

    async def list_playlist_tracks(self, playlist_id: str) -> List[TrackEntry]:
        tracks: List[TrackEntry] = []
        for item in await self.client.playlist_items(playlist_id):
            entry = self._normalize_track(item.get("track") if isinstance(item, dict) else None)
            if entry is not None:
                tracks.append(entry)
        return tracks

    async def list_devices(self) -> List[DeviceEntry]:
        devices: List[DeviceEntry] = []
        for d in await self.client.devices():
            entry = self._normalize_device(d)
            if entry is not None:
                devices.append(entry)
        return devices

    @staticmethod
    def _normalize_playlist(p: Any) -> Optional[PlaylistEntry]:
        if not isinstance(p, dict):
            return None
        # Keep the full URI when present; the track refetch strips it back down.
        pid = str(p.get("uri") or p.get("id") or "").strip()
        if not pid:
            return None
        return PlaylistEntry(display_name=str(p.get("name") or ""), id=pid)

    @staticmethod
    def _normalize_artist_list(artists: Any) -> str:
        if not isinstance(artists, list):
            return ""
        names = []
        for a in artists:
            if isinstance(a, dict) and a.get("name"):
                names.append(str(a.get("name")).strip())
        return ", ".join([n for n in names if n])

    @classmethod
    def _normalize_track(cls, track_obj: Any) -> Optional[TrackEntry]:
        if not isinstance(track_obj, dict):
            return None

        # Episodes and local files have no playable track id.
        if track_obj.get("type", "track") != "track" or track_obj.get("is_local"):
            return None

        track_id = str(track_obj.get("id") or "").strip()
        if not track_id:
            return None

        name = str(track_obj.get("name") or "")
        artists = cls._normalize_artist_list(track_obj.get("artists"))
        return TrackEntry(display_name=f"{name} - {artists}", playable_uri=track_uri(track_id))

    @staticmethod
    def _normalize_device(d: Any) -> Optional[DeviceEntry]:
        if not isinstance(d, dict):
            return None
        # Restricted devices are listed without an id and cannot be targeted.
        did = str(d.get("id") or "").strip()
        if not did:
            return None
        return DeviceEntry(
            id=did,
            name=str(d.get("name") or did),
            type=str(d.get("type") or ""),
            is_active=bool(d.get("is_active")),
        )
