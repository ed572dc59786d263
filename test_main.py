import os
import tempfile
import unittest
from unittest import mock

# Ensure local imports work when running this file directly.
THIS_DIR = os.path.dirname(os.path.abspath(__file__))
if THIS_DIR not in os.sys.path:
    os.sys.path.insert(0, THIS_DIR)

import main
from config import DEFAULT_CONFIG, StartupError
from spotify_api.errors import AuthError, FetchError
from spotify_api.token_manager import TokenManager, Tokens


class TestConnect(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.config = dict(DEFAULT_CONFIG, token_cache_path=os.path.join(self.tmp.name, "tokens.json"))
        self.token_manager = TokenManager(cache_path=self.config["token_cache_path"])

    async def test_stored_tokens_are_refreshed(self):
        self.token_manager.save(self.config, Tokens(access_token="at", refresh_token="rt"))
        refreshed = Tokens(access_token="at2", refresh_token="rt", expires_at=9999999999.0)

        with mock.patch.object(main.SpotifyClient, "refresh", mock.AsyncMock(return_value=refreshed)) as refresh, \
                mock.patch.object(main, "authenticate", mock.AsyncMock()) as authenticate:
            client = await main.connect("cid", "secret", self.config)
            await client.aclose()

        refresh.assert_awaited_once()
        authenticate.assert_not_awaited()
        self.assertEqual(client.tokens.refresh_token, "rt")

    async def test_refresh_failure_triggers_browser_login(self):
        self.token_manager.save(self.config, Tokens(access_token="at", refresh_token="revoked"))
        fresh = Tokens(access_token="new", refresh_token="new-rt", expires_at=9999999999.0)

        with mock.patch.object(main.SpotifyClient, "refresh", mock.AsyncMock(side_effect=AuthError("invalid_grant"))), \
                mock.patch.object(main, "authenticate", mock.AsyncMock(return_value=fresh)) as authenticate:
            client = await main.connect("cid", "secret", self.config)
            await client.aclose()

        authenticate.assert_awaited_once()
        self.assertEqual(authenticate.await_args.args, ("cid", "secret", self.config))
        self.assertEqual(client.tokens, fresh)

    async def test_no_stored_tokens_goes_straight_to_login(self):
        fresh = Tokens(access_token="new", refresh_token="new-rt", expires_at=9999999999.0)

        with mock.patch.object(main.SpotifyClient, "refresh", mock.AsyncMock()) as refresh, \
                mock.patch.object(main, "authenticate", mock.AsyncMock(return_value=fresh)):
            client = await main.connect("cid", "secret", self.config)
            await client.aclose()

        refresh.assert_not_awaited()
        self.assertEqual(client.tokens, fresh)


class TestMainExitCodes(unittest.TestCase):
    def _run_main(self, error):
        with mock.patch.object(main, "setup_logging"), \
                mock.patch.object(main, "load_config", return_value=dict(DEFAULT_CONFIG)), \
                mock.patch.object(main, "run", mock.Mock(return_value=None)), \
                mock.patch.object(main.asyncio, "run", mock.Mock(side_effect=error)):
            return main.main()

    def test_startup_auth_and_fetch_errors_exit_non_zero(self):
        for error in (StartupError("CLIENT_ID must be set"), AuthError("denied"), FetchError("500")):
            with self.subTest(error=type(error).__name__):
                with self.assertLogs(level="ERROR"):
                    self.assertEqual(self._run_main(error), 1)

    def test_clean_exit_is_zero(self):
        with mock.patch.object(main, "setup_logging"), \
                mock.patch.object(main, "load_config", return_value=dict(DEFAULT_CONFIG)), \
                mock.patch.object(main, "run", mock.Mock(return_value=None)), \
                mock.patch.object(main.asyncio, "run"):
            self.assertEqual(main.main(), 0)


if __name__ == "__main__":
    unittest.main(verbosity=2)
