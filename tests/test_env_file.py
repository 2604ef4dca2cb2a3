import os
import tempfile
import unittest
from pathlib import Path

from quire.env import log_level, read_env, temp_dir_kwargs, tree_depth, work_dir_root


def _restore_env(name: str, previous: str | None) -> None:
    if previous is None:
        os.environ.pop(name, None)
    else:
        os.environ[name] = previous


class EnvFileTests(unittest.TestCase):
    def test_read_env_prefers_plain_value(self) -> None:
        prev_plain = os.environ.get("QUIRE_SAMPLE")
        prev_file = os.environ.get("QUIRE_SAMPLE_FILE")
        with tempfile.NamedTemporaryFile("w", encoding="utf-8", delete=False) as tmp:
            tmp.write("from-file")
            file_path = tmp.name
        try:
            os.environ["QUIRE_SAMPLE"] = "from-env"
            os.environ["QUIRE_SAMPLE_FILE"] = file_path
            self.assertEqual(read_env("QUIRE_SAMPLE"), "from-env")
        finally:
            Path(file_path).unlink(missing_ok=True)
            _restore_env("QUIRE_SAMPLE", prev_plain)
            _restore_env("QUIRE_SAMPLE_FILE", prev_file)

    def test_read_env_supports_file_suffix(self) -> None:
        prev_plain = os.environ.get("QUIRE_SAMPLE")
        prev_file = os.environ.get("QUIRE_SAMPLE_FILE")
        with tempfile.NamedTemporaryFile("w", encoding="utf-8", delete=False) as tmp:
            tmp.write("from-file\n")
            file_path = tmp.name
        try:
            os.environ.pop("QUIRE_SAMPLE", None)
            os.environ["QUIRE_SAMPLE_FILE"] = file_path
            self.assertEqual(read_env("QUIRE_SAMPLE"), "from-file")
            os.environ["QUIRE_SAMPLE_FILE"] = file_path + ".missing"
            self.assertEqual(read_env("QUIRE_SAMPLE", "fallback"), "fallback")
        finally:
            Path(file_path).unlink(missing_ok=True)
            _restore_env("QUIRE_SAMPLE", prev_plain)
            _restore_env("QUIRE_SAMPLE_FILE", prev_file)

    def test_tree_depth_parsing(self) -> None:
        previous = os.environ.get("QUIRE_TREE_DEPTH")
        try:
            os.environ.pop("QUIRE_TREE_DEPTH", None)
            self.assertEqual(tree_depth(), 2)
            for raw, expected in (("3", 3), ("all", None), ("ALL", None), ("0", None), ("-1", None), ("deep", 2)):
                os.environ["QUIRE_TREE_DEPTH"] = raw
                self.assertEqual(tree_depth(), expected, raw)
        finally:
            _restore_env("QUIRE_TREE_DEPTH", previous)

    def test_work_dir_root_is_created(self) -> None:
        previous = os.environ.get("QUIRE_WORK_DIR")
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "nested" / "work"
            try:
                os.environ.pop("QUIRE_WORK_DIR", None)
                self.assertIsNone(work_dir_root())
                self.assertEqual(temp_dir_kwargs(), {"prefix": "quire-"})

                os.environ["QUIRE_WORK_DIR"] = str(target)
                self.assertEqual(work_dir_root(), target)
                self.assertTrue(target.is_dir())
                self.assertEqual(temp_dir_kwargs(), {"prefix": "quire-", "dir": str(target)})
            finally:
                _restore_env("QUIRE_WORK_DIR", previous)

    def test_log_level(self) -> None:
        previous = os.environ.get("QUIRE_LOG_LEVEL")
        try:
            os.environ.pop("QUIRE_LOG_LEVEL", None)
            self.assertEqual(log_level(), "WARNING")
            os.environ["QUIRE_LOG_LEVEL"] = " debug "
            self.assertEqual(log_level(), "DEBUG")
        finally:
            _restore_env("QUIRE_LOG_LEVEL", previous)


if __name__ == "__main__":
    unittest.main()
