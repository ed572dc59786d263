import logging
from enum import Enum
from typing import List, Optional

from spotify_api.data_loader import (
    DeviceEntry,
    PlaylistEntry,
    SpotifyDataLoader,
    TrackEntry,
    parse_catalog_id,
    track_uri,
)
from spotify_api.errors import PlaybackError

logger = logging.getLogger(__name__)


class FocusPanel(Enum):
    PLAYLISTS = "playlists"
    TRACKS = "tracks"

    def toggled(self) -> "FocusPanel":
        return FocusPanel.TRACKS if self is FocusPanel.PLAYLISTS else FocusPanel.PLAYLISTS


class Direction(Enum):
    NEXT = 1
    PREVIOUS = -1


def step_cursor(cursor: Optional[int], length: int, direction: Direction) -> Optional[int]:
    """Move a list cursor one row, wrapping at both ends. Empty lists have no cursor."""
    if length <= 0:
        return None
    if cursor is None:
        return 0
    return (cursor + direction.value) % length


def reset_cursor(items: list) -> Optional[int]:
    return 0 if items else None


class LibrarySession:
    """Playlists, tracks and devices for the running browser, plus both list cursors.

    All fetches replace their collection wholesale and reset its cursor.
    """

    def __init__(self, loader: SpotifyDataLoader):
        self.loader = loader
        self.playlists: List[PlaylistEntry] = []
        self.tracks: List[TrackEntry] = []
        self.devices: List[DeviceEntry] = []
        self.playlist_cursor: Optional[int] = None
        self.track_cursor: Optional[int] = None
        self.selected_playlist_id: Optional[str] = None
        self.selected_device_id: Optional[str] = None
        self.status_message = ""

    # -----------------
    # Fetches
    # -----------------

    async def fetch_playlists(self) -> None:
        self.playlists = await self.loader.list_playlists()
        self.playlist_cursor = reset_cursor(self.playlists)
        self.selected_playlist_id = self.playlists[0].id if self.playlists else None
        logger.info("Loaded %d playlists", len(self.playlists))

    async def fetch_devices(self) -> None:
        self.devices = await self.loader.list_devices()
        if self.devices:
            self.selected_device_id = self.devices[0].id
            logger.info("Selected device: %s", self.devices[0].name)
        else:
            self.selected_device_id = None
            logger.info("No active devices found.")

    async def select_playlist(self, playlist_id: str) -> None:
        self.selected_playlist_id = playlist_id
        await self.fetch_tracks_for_selected()

    async def fetch_tracks_for_selected(self) -> None:
        if self.selected_playlist_id is None:
            return

        self.tracks = []
        self.track_cursor = None

        try:
            playlist_id = parse_catalog_id(self.selected_playlist_id)
        except ValueError as e:
            logger.error("Invalid playlist ID for fetching tracks: %s - %s", self.selected_playlist_id, e)
            return

        self.tracks = await self.loader.list_playlist_tracks(playlist_id)
        self.track_cursor = reset_cursor(self.tracks)
        logger.debug("Loaded %d tracks for playlist %s", len(self.tracks), playlist_id)

    async def play_selected_track(self, uri: str) -> None:
        try:
            track_id = parse_catalog_id(uri)
        except ValueError as e:
            raise PlaybackError(f"Invalid track URI format: {uri!r}") from e

        await self.loader.client.start_playback([track_uri(track_id)], device_id=self.selected_device_id)
        logger.info("Started playback of %s on %s", track_id, self.selected_device_id or "default device")

    # -----------------
    # Navigation
    # -----------------

    def move_cursor(self, panel: FocusPanel, direction: Direction) -> None:
        if panel is FocusPanel.PLAYLISTS:
            self.playlist_cursor = step_cursor(self.playlist_cursor, len(self.playlists), direction)
        else:
            self.track_cursor = step_cursor(self.track_cursor, len(self.tracks), direction)

    def selected_playlist(self) -> Optional[PlaylistEntry]:
        if self.playlist_cursor is None:
            return None
        return self.playlists[self.playlist_cursor]

    def selected_track(self) -> Optional[TrackEntry]:
        if self.track_cursor is None:
            return None
        return self.tracks[self.track_cursor]

    def selected_device(self) -> Optional[DeviceEntry]:
        for device in self.devices:
            if device.id == self.selected_device_id:
                return device
        return None

    def report(self, message: str) -> None:
        self.status_message = message
