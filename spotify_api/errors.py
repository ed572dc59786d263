class SpotifyError(RuntimeError):
    """Base class for errors raised by the spotify_api package."""


class AuthError(SpotifyError):
    """OAuth flow or token refresh failed."""


class FetchError(SpotifyError):
    """A listing call (playlists, playlist items, devices) failed."""


class PlaybackError(SpotifyError):
    """Playback could not be started (bad URI or remote rejection)."""
