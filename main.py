import asyncio
import sys
from typing import Any, Dict

from config import StartupError, load_config, load_credentials
from menus.library_menu import library_menu
from spotify_api.auth import SpotifyPKCEAuth
from spotify_api.callback_server import authenticate
from spotify_api.client import SpotifyClient
from spotify_api.errors import AuthError, FetchError
from spotify_api.token_manager import TokenManager
from utils.logger import log_error, log_info, log_success, log_warning, setup_logging


async def connect(client_id: str, client_secret: str, config: Dict[str, Any]) -> SpotifyClient:
    """Return a client with a working access token.

    Stored tokens are refreshed once; if that fails (or nothing is stored)
    the browser login runs and the new tokens are saved.
    """
    token_manager = TokenManager(cache_path=config["token_cache_path"])
    auth = SpotifyPKCEAuth(client_id, client_secret, config, token_manager=token_manager)

    tokens = token_manager.load(config)
    if tokens is not None:
        client = SpotifyClient(auth, tokens)
        try:
            await client.refresh()
        except AuthError as e:
            log_warning(f"Failed to refresh token: {e}. Re-authenticating...")
            await client.aclose()
        else:
            log_success("Refreshed token successfully!")
            return client

    tokens = await authenticate(client_id, client_secret, config, token_manager=token_manager)
    log_success("Authenticated and saved token successfully!")
    return SpotifyClient(auth, tokens)


async def run(config: Dict[str, Any]) -> None:
    client_id, client_secret = load_credentials()
    client = await connect(client_id, client_secret, config)
    async with client:
        await library_menu(client, config)


def main() -> int:
    setup_logging()

    try:
        config = load_config()
        setup_logging(config["log_file"], config["log_level"])
        asyncio.run(run(config))
    except StartupError as e:
        log_error(f"Startup failed: {e}")
        return 1
    except AuthError as e:
        log_error(f"Spotify authentication failed: {e}")
        return 1
    except FetchError as e:
        log_error(f"Could not load your Spotify library: {e}")
        return 1
    except KeyboardInterrupt:
        log_info("Interrupted.")
        return 130

    log_info("Exiting program...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
