"""
Tests for config loading and validation.

Settings come from `nrepleval.core.configs`: config file, then .env, then
NREPL_EVAL_* environment variables.
"""

import configparser
import shutil
import tempfile
import unittest
from pathlib import Path

from nrepleval.core.configs import EvalSettings, env_overrides, get_eval_settings, load_config, load_raw_config
from nrepleval.exceptions import ConfigError
from nrepleval.ui.config_commands import save_config_file


class TestConfig(unittest.TestCase):
    """Test cases for configuration helpers."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_file = Path(self.temp_dir) / "config.cfg"
        self.env_file = Path(self.temp_dir) / ".env"

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, defaults: dict) -> None:
        cfg = configparser.ConfigParser()
        cfg["DEFAULT"] = defaults
        with open(self.config_file, "w") as handle:
            cfg.write(handle)

    def test_load_raw_config_lowercases_keys(self):
        self._write_config({"HOST": "10.0.0.5", "Timeout_MS": "5000"})
        raw = load_raw_config(self.config_file)
        self.assertEqual(raw["host"], "10.0.0.5")
        self.assertEqual(raw["timeout_ms"], "5000")

    def test_load_raw_config_missing_file_returns_empty_dict(self):
        self.assertEqual(load_raw_config(self.config_file), {})

    def test_defaults(self):
        settings = get_eval_settings({})
        self.assertEqual(settings, EvalSettings())
        self.assertEqual(settings.host, "127.0.0.1")
        self.assertEqual(settings.timeout_ms, 120000)
        self.assertEqual(settings.poll_interval, 0.25)
        self.assertEqual(settings.interrupt_attempts, 20)
        self.assertTrue(settings.repair_delimiters)
        self.assertIsNone(settings.session_dir)
        self.assertEqual(settings.timeout_seconds, 120.0)

    def test_parsing(self):
        settings = get_eval_settings({
            "host": "localhost",
            "timeout_ms": "2500",
            "poll_interval": "0.1",
            "repair_delimiters": "no",
            "session_dir": "/tmp/sessions",
            "log_level": "debug",
        })
        self.assertEqual(settings.host, "localhost")
        self.assertEqual(settings.timeout_ms, 2500)
        self.assertEqual(settings.poll_interval, 0.1)
        self.assertFalse(settings.repair_delimiters)
        self.assertEqual(settings.session_dir, Path("/tmp/sessions"))
        self.assertEqual(settings.log_level, "DEBUG")

    def test_invalid_values_raise(self):
        with self.assertRaises(ConfigError):
            get_eval_settings({"timeout_ms": "soon"})
        with self.assertRaises(ConfigError):
            get_eval_settings({"poll_interval": "-1"})
        with self.assertRaises(ConfigError):
            get_eval_settings({"log_level": "LOUD"})

    def test_zero_numbers_are_rejected(self):
        for key in ("timeout_ms", "poll_interval", "interrupt_attempts", "connect_timeout"):
            with self.subTest(key=key):
                with self.assertRaises(ConfigError):
                    get_eval_settings({key: "0"})

        # Truncates to zero milliseconds
        with self.assertRaises(ConfigError):
            get_eval_settings({"timeout_ms": "0.4"})
        with self.assertRaises(ConfigError):
            get_eval_settings({"interrupt_attempts": "many"})
        with self.assertRaises(ConfigError):
            get_eval_settings({"timeout_ms": "inf"})

    def test_zero_in_environment_is_rejected(self):
        raw = load_config(self.config_file, self.env_file, environ={"NREPL_EVAL_POLL_INTERVAL": "0"})
        with self.assertRaises(ConfigError):
            get_eval_settings(raw)

    def test_environment_beats_env_file(self):
        self.env_file.write_text("NREPL_EVAL_POLL_INTERVAL=0.5\nNREPL_EVAL_CONNECT_TIMEOUT=3\n")

        raw = load_config(self.config_file, self.env_file, environ={"NREPL_EVAL_POLL_INTERVAL": "0.1"})
        settings = get_eval_settings(raw)

        self.assertEqual(settings.poll_interval, 0.1)
        self.assertEqual(settings.connect_timeout, 3.0)

    def test_precedence_file_then_env_file_then_environment(self):
        self._write_config({"host": "from-file", "timeout_ms": "1000", "poll_interval": "0.5"})
        self.env_file.write_text("NREPL_EVAL_TIMEOUT_MS=2000\nNREPL_EVAL_HOST=from-dotenv\nUNRELATED=1\n")

        raw = load_config(self.config_file, self.env_file, environ={"NREPL_EVAL_HOST": "from-env"})
        settings = get_eval_settings(raw)

        self.assertEqual(settings.host, "from-env")
        self.assertEqual(settings.timeout_ms, 2000)
        self.assertEqual(settings.poll_interval, 0.5)
        self.assertNotIn("unrelated", raw)

    def test_env_overrides_ignores_blank_values(self):
        self.assertEqual(env_overrides({"NREPL_EVAL_HOST": " ", "NREPL_EVAL_PARINFER": "pi"}), {"parinfer_command": "pi"})

    def test_saved_defaults_load_back(self):
        save_config_file(EvalSettings(), self.config_file)
        self.assertEqual(get_eval_settings(load_raw_config(self.config_file)), EvalSettings())


if __name__ == "__main__":
    unittest.main()
