import asyncio
import os
import socket
import unittest

import httpx
from aiohttp.test_utils import TestClient, TestServer

# Ensure local imports work when running this file directly.
THIS_DIR = os.path.dirname(os.path.abspath(__file__))
if THIS_DIR not in os.sys.path:
    os.sys.path.insert(0, THIS_DIR)

from spotify_api.callback_server import ALREADY_DONE_TEXT, FAILURE_TEXT, SUCCESS_TEXT, CallbackHandshake
from spotify_api.errors import AuthError
from spotify_api.token_manager import Tokens


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class FakeAuth:
    """Stands in for SpotifyPKCEAuth: fixed state, scripted code exchange."""

    def __init__(self, *, redirect_uri="http://127.0.0.1:8888/callback", fail_exchange=False, exchange_delay=0.0):
        self.redirect_uri = redirect_uri
        self.fail_exchange = fail_exchange
        self.exchange_delay = exchange_delay
        self.state = None
        self.tokens = None
        self.exchanged_codes = []

    def begin_oauth_flow(self, *, show_dialog=False):
        self.state = "expected-state"
        return "https://accounts.spotify.com/authorize?state=expected-state"

    async def exchange_code_for_token(self, *, code, code_verifier=None):
        self.exchanged_codes.append(code)
        if self.exchange_delay:
            await asyncio.sleep(self.exchange_delay)
        if self.fail_exchange:
            raise AuthError("Spotify token request failed (HTTP 400): invalid_grant")
        self.tokens = Tokens(access_token=f"at-{code}", refresh_token="rt")
        return self.tokens


class TestCallbackRoute(unittest.IsolatedAsyncioTestCase):
    async def _client(self, handshake):
        await handshake.begin()
        client = TestClient(TestServer(handshake.make_app()))
        await client.start_server()
        self.addAsyncCleanup(client.close)
        return client

    async def test_code_is_exchanged_and_delivered_once(self):
        auth = FakeAuth()
        handshake = CallbackHandshake(auth)
        client = await self._client(handshake)

        resp = await client.get("/callback", params={"code": "c1", "state": "expected-state"})
        self.assertEqual(resp.status, 200)
        self.assertEqual(await resp.text(), SUCCESS_TEXT)
        self.assertEqual(await handshake._completion, Tokens(access_token="at-c1", refresh_token="rt"))

        resp = await client.get("/callback", params={"code": "c2", "state": "expected-state"})
        self.assertEqual(await resp.text(), ALREADY_DONE_TEXT)
        self.assertEqual(auth.exchanged_codes, ["c1"])

    async def test_concurrent_callbacks_exchange_only_once(self):
        auth = FakeAuth(exchange_delay=0.05)
        handshake = CallbackHandshake(auth)
        client = await self._client(handshake)

        first, second = await asyncio.gather(
            client.get("/callback", params={"code": "c1", "state": "expected-state"}),
            client.get("/callback", params={"code": "c2", "state": "expected-state"}),
        )
        texts = sorted([await first.text(), await second.text()])

        self.assertEqual(texts, sorted([SUCCESS_TEXT, ALREADY_DONE_TEXT]))
        self.assertEqual(len(auth.exchanged_codes), 1)
        delivered = await handshake._completion
        self.assertEqual(delivered, auth.tokens)

    async def test_exchange_failure_is_delivered_as_auth_error(self):
        handshake = CallbackHandshake(FakeAuth(fail_exchange=True))
        client = await self._client(handshake)

        resp = await client.get("/callback", params={"code": "bad", "state": "expected-state"})
        self.assertEqual(resp.status, 500)
        self.assertEqual(await resp.text(), FAILURE_TEXT)
        self.assertTrue(handshake.completed)
        with self.assertRaises(AuthError):
            await handshake._completion

    async def test_authorization_error_param_is_delivered(self):
        handshake = CallbackHandshake(FakeAuth())
        client = await self._client(handshake)

        resp = await client.get("/callback", params={"error": "access_denied", "state": "expected-state"})
        self.assertEqual(resp.status, 400)
        with self.assertRaisesRegex(AuthError, "access_denied"):
            await handshake._completion

    async def test_error_param_with_wrong_state_is_ignored(self):
        handshake = CallbackHandshake(FakeAuth())
        client = await self._client(handshake)

        resp = await client.get("/callback", params={"error": "access_denied", "state": "stale"})
        self.assertEqual(resp.status, 400)
        resp = await client.get("/callback", params={"error": "access_denied"})
        self.assertEqual(resp.status, 400)
        self.assertFalse(handshake.completed)

    async def test_missing_code_or_wrong_state_leaves_handshake_open(self):
        auth = FakeAuth()
        handshake = CallbackHandshake(auth)
        client = await self._client(handshake)

        resp = await client.get("/callback")
        self.assertEqual(resp.status, 400)
        resp = await client.get("/callback", params={"code": "c1", "state": "stale"})
        self.assertEqual(resp.status, 400)

        self.assertFalse(handshake.completed)
        self.assertEqual(auth.exchanged_codes, [])

    async def test_only_callback_route_exists(self):
        client = await self._client(CallbackHandshake(FakeAuth()))
        resp = await client.get("/", params={"code": "c1"})
        self.assertEqual(resp.status, 404)


class TestCallbackHandshakeRun(unittest.IsolatedAsyncioTestCase):
    async def test_run_returns_tokens_and_stops_listener(self):
        port = _free_port()
        auth = FakeAuth(redirect_uri=f"http://127.0.0.1:{port}/callback")
        opened = []
        pending = []

        async def follow_redirect():
            async with httpx.AsyncClient() as http:
                resp = await http.get(f"http://127.0.0.1:{port}/callback", params={"code": "c1", "state": auth.state})
                return resp.text

        def open_browser(url):
            opened.append(url)
            pending.append(asyncio.get_running_loop().create_task(follow_redirect()))
            return True

        handshake = CallbackHandshake(auth, open_browser=open_browser)
        tokens = await handshake.run(timeout=10)

        self.assertEqual(tokens.access_token, "at-c1")
        self.assertEqual(opened, ["https://accounts.spotify.com/authorize?state=expected-state"])
        self.assertEqual(await pending[0], SUCCESS_TEXT)
        self.assertIsNone(handshake._runner)

    async def test_browser_launch_failure_is_auth_error(self):
        port = _free_port()
        handshake = CallbackHandshake(FakeAuth(redirect_uri=f"http://127.0.0.1:{port}/callback"), open_browser=lambda url: False)

        with self.assertRaisesRegex(AuthError, "browser"):
            await handshake.run()
        self.assertIsNone(handshake._runner)

    async def test_port_in_use_is_auth_error(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen(1)
            port = busy.getsockname()[1]
            handshake = CallbackHandshake(FakeAuth(redirect_uri=f"http://127.0.0.1:{port}/callback"), open_browser=lambda url: True)

            with self.assertRaisesRegex(AuthError, "Could not listen"):
                await handshake.run()

    async def test_timeout_is_auth_error(self):
        port = _free_port()
        handshake = CallbackHandshake(FakeAuth(redirect_uri=f"http://127.0.0.1:{port}/callback"), open_browser=lambda url: True)

        with self.assertRaisesRegex(AuthError, "Timed out"):
            await handshake.run(timeout=0.1)
        self.assertIsNone(handshake._runner)


if __name__ == "__main__":
    unittest.main(verbosity=2)
