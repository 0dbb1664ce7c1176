import importlib.util
import json
import os
import tempfile
import unittest
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

from promptchess.errors import EngineCrashedError

RUN_PY = os.path.join(os.path.dirname(__file__), "..", "scripts", "run.py")


def load_run_script():
    spec = importlib.util.spec_from_file_location("sweep_run", RUN_PY)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class RunConfigTests(unittest.TestCase):
    def setUp(self):
        self.run = load_run_script()

    def test_unexpected_failures_do_not_stop_the_sweep(self):
        failures = [RuntimeError("worker exploded"), KeyError("agent-missing"), EngineCrashedError("Engine process died")]
        with tempfile.TemporaryDirectory() as tmp:
            entry = self.run.build_entry_from_dict({"model": "gpt-test", "out_dir": tmp, "games": 3, "level": 2})
            with patch.object(self.run, "run_match_job", side_effect=failures), \
                    ThreadPoolExecutor(max_workers=1) as pool:
                rows = self.run.run_config(entry, "example.json", pool)

            self.assertEqual(len(rows), 3)
            self.assertTrue(all(r["status"] == "errored" for r in rows))
            messages = sorted(r["error_message"].split(":")[0] for r in rows)
            self.assertEqual(messages, ["EngineCrashedError", "KeyError", "RuntimeError"])
            with open(os.path.join(tmp, "results.jsonl"), encoding="utf-8") as f:
                saved = [json.loads(line) for line in f]
            self.assertEqual(len(saved), 3)
            self.assertEqual({r["config"] for r in saved}, {"example.json"})


if __name__ == "__main__":
    unittest.main()
