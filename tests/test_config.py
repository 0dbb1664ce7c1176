import unittest
from unittest.mock import patch

from promptchess import config


class StockfishPathTests(unittest.TestCase):
    def test_explicit_path_wins(self):
        self.assertEqual(config.resolve_stockfish_path("/srv/engines/sf16"), "/srv/engines/sf16")

    def test_first_known_location(self):
        with patch("promptchess.config.os.path.isfile", side_effect=lambda p: p == "/usr/local/bin/stockfish"):
            self.assertEqual(config.resolve_stockfish_path(None), "/usr/local/bin/stockfish")

    def test_path_lookup_then_bare_name(self):
        with patch("promptchess.config.os.path.isfile", return_value=False):
            with patch("promptchess.config.shutil.which", return_value="/home/me/bin/stockfish"):
                self.assertEqual(config.resolve_stockfish_path(), "/home/me/bin/stockfish")
            with patch("promptchess.config.shutil.which", return_value=None):
                self.assertEqual(config.resolve_stockfish_path(), "stockfish")


class SettingsLookupTests(unittest.TestCase):
    def test_yaml_beats_environment(self):
        with patch.dict(config._cfg, {"PROMPTCHESS_ENGINE_THINK_MS": "250"}, clear=True), \
                patch.dict("os.environ", {"PROMPTCHESS_ENGINE_THINK_MS": "900"}):
            self.assertEqual(config._get("PROMPTCHESS_ENGINE_THINK_MS", 1000, cast=int), 250)

    def test_environment_then_default(self):
        with patch.dict(config._cfg, {}, clear=True), \
                patch.dict("os.environ", {"PROMPTCHESS_MAX_MOVE_ATTEMPTS": "5"}):
            self.assertEqual(config._get("PROMPTCHESS_MAX_MOVE_ATTEMPTS", 3, cast=int), 5)
            self.assertEqual(config._get("PROMPTCHESS_NOT_SET_ANYWHERE", 7), 7)

    def test_defaults_are_sane(self):
        s = config.SETTINGS
        self.assertGreater(s.max_move_attempts, 0)
        self.assertGreater(s.engine_think_ms, 0)
        self.assertTrue(s.stockfish_path)


if __name__ == "__main__":
    unittest.main()
