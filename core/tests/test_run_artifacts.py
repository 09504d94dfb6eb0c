"""Tests for run artifact writer."""

import json
import tempfile
import unittest
from pathlib import Path

from core.run_artifacts import build_failure_manifest, write_run_report


class TestRunArtifacts(unittest.TestCase):
    def test_write_run_report(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_run_report(
                report={"status": "success", "value": 1},
                run_id="run123",
                output_dir=tmpdir,
            )
            self.assertTrue(Path(path).is_file())
            self.assertEqual(Path(path).name, "clone-run123.json")
            payload = json.loads(Path(path).read_text(encoding="utf-8"))
            self.assertEqual(payload["run_id"], "run123")
            self.assertEqual(payload["status"], "success")
            self.assertEqual(payload["value"], 1)
            self.assertIn("timestamp_utc", payload)
            self.assertEqual(payload["failures"], [])
            self.assertEqual(payload["manifest"]["failed_batches"], 0)

    def test_failures_are_grouped_by_kind(self) -> None:
        failures = [
            {"batcher": "nodes", "entities": [["node", "4:x:1"], ["node", "4:x:2"]]},
            {"batcher": "relationships", "entities": [["relationship", 9]]},
        ]
        manifest = build_failure_manifest(failures)
        self.assertEqual(manifest["failed_batches"], 2)
        self.assertEqual(
            manifest["failed_entities"],
            {"node": ["4:x:1", "4:x:2"], "relationship": [9]},
        )

    def test_report_includes_manifest(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_run_report(
                report={"status": "failed"},
                run_id="r1",
                output_dir=tmpdir,
                failures=[{"batcher": "nodes", "entities": [["node", 3]]}],
            )
            payload = json.loads(Path(path).read_text(encoding="utf-8"))
        self.assertEqual(payload["manifest"]["failed_entities"], {"node": [3]})
        self.assertEqual(len(payload["failures"]), 1)


if __name__ == "__main__":
    unittest.main()
