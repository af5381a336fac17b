import json
import os
import tempfile
import unittest
from pathlib import Path

import sys
from pathlib import Path as _Path

sys.path.insert(0, str(_Path(__file__).resolve().parents[1] / "src"))

from settlewatch.config import ConfigError, canonical_path, default_config_path, load_config


class ConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = canonical_path(self._td.name)

    def tearDown(self) -> None:
        self._td.cleanup()

    def _write(self, name: str, text: str) -> Path:
        path = self.root / name
        path.write_text(text, encoding="utf-8")
        return path

    def test_legacy_json_list(self) -> None:
        path = self._write(
            "fileWatcher.json",
            json.dumps([{"file": "/tmp/a.csv", "command": "echo A"}, {"file": "b.csv", "command": "echo B"}]),
        )
        cfg = load_config(path)
        self.assertEqual(len(cfg.watches), 2)
        self.assertEqual(cfg.watches[0].path, canonical_path("/tmp/a.csv"))
        self.assertEqual(cfg.watches[0].command, "echo A")
        # Relative paths are anchored at the config file's directory.
        self.assertEqual(cfg.watches[1].path, self.root / "b.csv")
        self.assertEqual(cfg.stability.first_attempts, 10)
        self.assertEqual(cfg.stability.retry_attempts, 3)
        self.assertEqual(cfg.debounce.event_seconds, 3.0)
        self.assertEqual(cfg.debounce.reload_seconds, 2.0)
        self.assertIsNone(cfg.commands.timeout_seconds)
        self.assertIsNone(cfg.logging.file)
        self.assertEqual(cfg.config_path, path)

    def test_yaml_mapping_with_overrides(self) -> None:
        path = self._write(
            "settlewatch.yaml",
            "watches:\n"
            "  - file: data/a.csv\n"
            "    command: make import\n"
            "stability:\n"
            "  interval_seconds: 0.5\n"
            "  first_attempts: 4\n"
            "debounce:\n"
            "  event_seconds: 1\n"
            "commands:\n"
            "  timeout_seconds: 60\n"
            "logging:\n"
            "  file: logs/settlewatch.log\n",
        )
        cfg = load_config(path)
        self.assertEqual(cfg.watches[0].path, self.root / "data" / "a.csv")
        self.assertEqual(cfg.stability.interval_seconds, 0.5)
        self.assertEqual(cfg.stability.first_attempts, 4)
        self.assertEqual(cfg.stability.retry_attempts, 3)
        self.assertEqual(cfg.debounce.event_seconds, 1.0)
        self.assertEqual(cfg.debounce.reload_seconds, 2.0)
        self.assertEqual(cfg.commands.timeout_seconds, 60.0)
        # Relative log paths are anchored at the config directory, like watch paths.
        self.assertEqual(cfg.logging.file, self.root / "logs" / "settlewatch.log")

    def test_env_vars_are_expanded(self) -> None:
        os.environ["SETTLEWATCH_TEST_DIR"] = str(self.root / "exports")
        try:
            path = self._write("c.yaml", "- file: $SETTLEWATCH_TEST_DIR/r.xlsx\n  command: echo R\n")
            cfg = load_config(path)
            self.assertEqual(cfg.watches[0].path, self.root / "exports" / "r.xlsx")
        finally:
            os.environ.pop("SETTLEWATCH_TEST_DIR", None)

    def test_missing_config_raises(self) -> None:
        with self.assertRaises(ConfigError):
            load_config(self.root / "nope.yaml")

    def test_malformed_yaml_raises(self) -> None:
        path = self._write("bad.yaml", "watches: [\n")
        with self.assertRaises(ConfigError):
            load_config(path)

    def test_invalid_entries_raise(self) -> None:
        cases = {
            "empty": "",
            "scalar": "42\n",
            "no_watches": "watches: []\n",
            "not_a_list": "watches: {file: a, command: b}\n",
            "entry_not_mapping": "- a.csv\n",
            "empty_command": "- file: a.csv\n  command: ''\n",
            "empty_file": "- file: ''\n  command: echo\n",
            "duplicate": "- file: a.csv\n  command: echo 1\n- file: ./a.csv\n  command: echo 2\n",
            "bad_interval": "watches:\n  - file: a\n    command: b\nstability:\n  interval_seconds: 0\n",
            "bad_attempts": "watches:\n  - file: a\n    command: b\nstability:\n  first_attempts: zero\n",
            "negative_debounce": "watches:\n  - file: a\n    command: b\ndebounce:\n  event_seconds: -1\n",
            "stability_not_mapping": "watches:\n  - file: a\n    command: b\nstability: 5\n",
            "debounce_not_mapping": "watches:\n  - file: a\n    command: b\ndebounce: [1]\n",
            "commands_not_mapping": "watches:\n  - file: a\n    command: b\ncommands: x\n",
            "logging_not_mapping": "watches:\n  - file: a\n    command: b\nlogging: 3\n",
        }
        for name, text in cases.items():
            with self.subTest(case=name):
                path = self._write(f"{name}.yaml", text)
                with self.assertRaises(ConfigError):
                    load_config(path)

    def test_default_config_path_prefers_env(self) -> None:
        os.environ["SETTLEWATCH_CONFIG"] = str(self.root / "x.yaml")
        try:
            self.assertEqual(default_config_path(), self.root / "x.yaml")
        finally:
            os.environ.pop("SETTLEWATCH_CONFIG", None)


if __name__ == "__main__":
    unittest.main()
