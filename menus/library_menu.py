import asyncio
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Tuple

from blessed import Terminal

from config import StartupError
from spotify_api.client import SpotifyClient
from spotify_api.data_loader import SpotifyDataLoader
from spotify_api.errors import FetchError, PlaybackError
from utils.logger import log_error, log_info, log_warning, set_console_logging

from .layout import build_frame, render_frame
from .session import Direction, FocusPanel, LibrarySession

KEY_QUIT = "quit"
KEY_TAB = "tab"
KEY_UP = "up"
KEY_DOWN = "down"
KEY_ENTER = "enter"

_SEQUENCE_KEYS = {
    "KEY_TAB": KEY_TAB,
    "KEY_UP": KEY_UP,
    "KEY_DOWN": KEY_DOWN,
    "KEY_ENTER": KEY_ENTER,
}

_PLAIN_KEYS = {
    "q": KEY_QUIT,
    "\t": KEY_TAB,
    "\n": KEY_ENTER,
    "\r": KEY_ENTER,
}


def normalize_key(keystroke: Any) -> Optional[str]:
    """Map a blessed Keystroke (or plain string) to one of the bound key names.

    Returns None for timeouts and unbound keys.
    """
    if not keystroke:
        return None
    if getattr(keystroke, "is_sequence", False):
        return _SEQUENCE_KEYS.get(getattr(keystroke, "name", None))
    return _PLAIN_KEYS.get(str(keystroke))


class LibraryBrowser:
    """Render/poll/dispatch loop over a LibrarySession.

    Network calls triggered by Enter are awaited inline, so the screen is not
    redrawn until they finish.
    """

    def __init__(self, session: LibrarySession, *, term: Optional[Terminal] = None, poll_interval: float = 0.25):
        self.session = session
        self.term = term or Terminal()
        self.poll_interval = poll_interval
        self.focus = FocusPanel.PLAYLISTS
        self.running = True
        self._drawn_size: Optional[Tuple[int, int]] = None

    async def handle_key(self, key: Optional[str]) -> None:
        if key == KEY_QUIT:
            self.running = False
        elif key == KEY_TAB:
            self.focus = self.focus.toggled()
        elif key == KEY_UP:
            self.session.move_cursor(self.focus, Direction.PREVIOUS)
        elif key == KEY_DOWN:
            self.session.move_cursor(self.focus, Direction.NEXT)
        elif key == KEY_ENTER:
            await self._activate()

    async def _activate(self) -> None:
        if self.focus is FocusPanel.PLAYLISTS:
            playlist = self.session.selected_playlist()
            if playlist is None:
                return
            try:
                await self.session.select_playlist(playlist.id)
            except FetchError as e:
                log_error(f"Could not load tracks for '{playlist.display_name}': {e}")
                self.session.report(f"Could not load tracks: {e}")
                return
            self.session.report(f"{playlist.display_name}: {len(self.session.tracks)} tracks")
        else:
            track = self.session.selected_track()
            if track is None:
                return
            try:
                await self.session.play_selected_track(track.playable_uri)
            except PlaybackError as e:
                log_error(f"Playback failed: {e}")
                self.session.report(f"Playback failed: {e}")
                return
            self.session.report(f"Playing {track.display_name}")

    def draw(self) -> None:
        size = (self.term.width, self.term.height)
        frame = build_frame(self.session, self.focus, *size)
        print(render_frame(self.term, frame, clear=size != self._drawn_size), end="", flush=True)
        self._drawn_size = size

    async def read_key(self) -> Optional[str]:
        loop = asyncio.get_running_loop()
        keystroke = await loop.run_in_executor(None, lambda: self.term.inkey(timeout=self.poll_interval))
        return normalize_key(keystroke)

    @contextmanager
    def screen(self) -> Iterator[None]:
        """Fullscreen + cbreak + hidden cursor; always restored on exit."""
        if not self.term.is_a_tty:
            raise StartupError("The library browser needs an interactive terminal.")

        set_console_logging(False)
        try:
            with self.term.fullscreen(), self.term.cbreak(), self.term.hidden_cursor():
                yield
        finally:
            set_console_logging(True)

    async def run(self) -> None:
        with self.screen():
            while self.running:
                self.draw()
                await self.handle_key(await self.read_key())


async def load_session(client: SpotifyClient) -> LibrarySession:
    """Startup fetches; any FetchError here is fatal to the caller."""
    session = LibrarySession(SpotifyDataLoader(client))
    await session.fetch_playlists()
    await session.fetch_devices()
    await session.fetch_tracks_for_selected()

    if not session.playlists:
        log_warning("No playlists found for this account.")
    if session.selected_device_id is None:
        session.report("No devices found; playback will use the account default")
    return session


async def library_menu(client: SpotifyClient, config: Dict[str, Any]) -> None:
    """Load the library and run the two-panel browser until the user quits."""
    session = await load_session(client)
    log_info(f"Loaded {len(session.playlists)} playlists, {len(session.devices)} devices")

    poll_interval = float(config.get("poll_interval_ms", 250)) / 1000.0
    await LibraryBrowser(session, poll_interval=poll_interval).run()
