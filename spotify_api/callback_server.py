"""Loopback OAuth callback listener.

The handshake binds a short-lived aiohttp server to the redirect URI's
host/port, opens the authorize URL in the browser and waits for exactly one
result on a single-use future. The result is either the exchanged tokens or
an AuthError; once it arrives the listener is shut down gracefully.
"""

import asyncio
import logging
import urllib.parse
import webbrowser
from typing import Any, Callable, Dict, Optional

from aiohttp import web

from .auth import SpotifyPKCEAuth
from .errors import AuthError
from .token_manager import TokenManager, Tokens

logger = logging.getLogger(__name__)

SUCCESS_TEXT = "Authentication successful! You can close this window."
FAILURE_TEXT = "Failed to get token. Check the terminal for details."
ALREADY_DONE_TEXT = "Authentication already completed. You can close this window."


class CallbackHandshake:
    """One OAuth authorization round trip through a local callback route."""

    def __init__(
        self,
        auth: SpotifyPKCEAuth,
        *,
        open_browser: Callable[[str], bool] = webbrowser.open,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ):
        parsed = urllib.parse.urlparse(auth.redirect_uri)
        self.auth = auth
        self.open_browser = open_browser
        self.host = host or parsed.hostname or "127.0.0.1"
        self.port = int(port if port is not None else (parsed.port or 8888))
        self.path = parsed.path or "/callback"
        self.authorize_url: Optional[str] = None
        # Guards the auth helper: URL generation, code exchange, token read.
        self._lock = asyncio.Lock()
        self._completion: Optional[asyncio.Future] = None
        self._runner: Optional[web.AppRunner] = None

    @property
    def completed(self) -> bool:
        return self._completion is not None and self._completion.done()

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get(self.path, self._handle_callback)
        return app

    async def begin(self) -> str:
        """Create the completion future and the authorize URL."""
        self._completion = asyncio.get_running_loop().create_future()
        async with self._lock:
            try:
                self.authorize_url = self.auth.begin_oauth_flow()
            except ValueError as e:
                raise AuthError(f"Could not build the authorization URL: {e}") from e
        return self.authorize_url

    def _deliver(self, *, tokens: Optional[Tokens] = None, error: Optional[Exception] = None) -> bool:
        if self._completion is None or self._completion.done():
            return False
        if error is not None:
            self._completion.set_exception(error)
        else:
            self._completion.set_result(tokens)
        return True

    async def _handle_callback(self, request: web.Request) -> web.Response:
        expected_state = self.auth.state
        if expected_state and request.query.get("state") != expected_state:
            logger.warning("Ignoring callback with mismatching OAuth state")
            return web.Response(text="OAuth state mismatch. Start the login again.", status=400)

        error = request.query.get("error")
        if error:
            logger.error("Authorization server returned error: %s", error)
            self._deliver(error=AuthError(f"Spotify authorization failed: {error}"))
            return web.Response(text=FAILURE_TEXT, status=400)

        code = request.query.get("code", "")
        if not code:
            return web.Response(text="Missing authorization code.", status=400)

        if self.completed:
            return web.Response(text=ALREADY_DONE_TEXT)

        async with self._lock:
            # Another callback may have finished while this one waited.
            if self.completed:
                return web.Response(text=ALREADY_DONE_TEXT)
            try:
                await self.auth.exchange_code_for_token(code=code)
            except AuthError as e:
                logger.error("Code exchange failed: %s", e)
                self._deliver(error=e)
                return web.Response(text=FAILURE_TEXT, status=500)
            tokens = self.auth.tokens

        self._deliver(tokens=tokens)
        return web.Response(text=SUCCESS_TEXT)

    async def start(self) -> None:
        runner = web.AppRunner(self.make_app())
        await runner.setup()
        site = web.TCPSite(runner, self.host, self.port)
        try:
            await site.start()
        except OSError as e:
            await runner.cleanup()
            raise AuthError(f"Could not listen on {self.host}:{self.port}: {e}") from e
        self._runner = runner
        logger.debug("Callback listener on http://%s:%d%s", self.host, self.port, self.path)

    async def stop(self) -> None:
        """Stop accepting connections and let in-flight requests finish."""
        if self._runner is not None:
            runner, self._runner = self._runner, None
            await runner.cleanup()
            logger.debug("Callback listener stopped")

    async def run(self, *, timeout: Optional[float] = None) -> Tokens:
        url = await self.begin()
        await self.start()
        try:
            logger.info("Opening browser for Spotify authorization: %s", url)
            try:
                opened = self.open_browser(url)
            except webbrowser.Error as e:
                raise AuthError(f"Could not launch a browser: {e}") from e
            if not opened:
                raise AuthError(f"Could not launch a browser. Open this URL manually:\n{url}")

            try:
                return await asyncio.wait_for(self._completion, timeout)
            except asyncio.TimeoutError as e:
                raise AuthError("Timed out waiting for Spotify authorization.") from e
        finally:
            await self.stop()


async def authenticate(
    client_id: str,
    client_secret: str,
    config: Optional[Dict[str, Any]] = None,
    *,
    token_manager: Optional[TokenManager] = None,
    open_browser: Callable[[str], bool] = webbrowser.open,
) -> Tokens:
    """Run the browser login and return fresh tokens (saved via token_manager)."""

    config = config or {}
    auth = SpotifyPKCEAuth(client_id, client_secret, config, token_manager=token_manager)
    handshake = CallbackHandshake(auth, open_browser=open_browser)
    return await handshake.run(timeout=config.get("auth_timeout_seconds"))
