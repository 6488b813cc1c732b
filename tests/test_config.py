"""
Unit tests for configuration loading.
"""

import os
import shutil
import tempfile
import unittest

from hallpass.config import get_default_config, load_config, merge_config


class TestConfig(unittest.TestCase):
    """Test cases for the configuration helpers."""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self):
        if os.path.exists(self.test_dir):
            shutil.rmtree(self.test_dir)

    def _write(self, text):
        path = os.path.join(self.test_dir, 'config.yaml')
        with open(path, 'w') as f:
            f.write(text)
        return path

    def test_missing_file_gives_defaults(self):
        config = load_config(os.path.join(self.test_dir, 'missing.yaml'))
        self.assertEqual(config, get_default_config())

    def test_partial_file_merges_with_defaults(self):
        path = self._write("recognition:\n  accept_threshold: 0.5\nvideo:\n  camera_id: 2\n")
        config = load_config(path)
        self.assertEqual(config['recognition']['accept_threshold'], 0.5)
        self.assertEqual(config['video']['camera_id'], 2)
        self.assertEqual(config['video']['frame_width'], 640)
        self.assertEqual(config['embedding']['embedding_size'], 128)

    def test_invalid_yaml_gives_defaults(self):
        path = self._write("recognition: [unclosed\n")
        self.assertEqual(load_config(path), get_default_config())

    def test_non_mapping_gives_defaults(self):
        path = self._write("- just\n- a list\n")
        self.assertEqual(load_config(path), get_default_config())

    def test_shipped_config_matches_defaults(self):
        root = os.path.join(os.path.dirname(__file__), '..')
        config = load_config(os.path.join(root, 'config', 'config.yaml'))
        self.assertEqual(config, get_default_config())

    def test_merge_does_not_modify_base(self):
        base = {'a': {'b': 1, 'c': 2}}
        merged = merge_config(base, {'a': {'b': 3}, 'd': 4})
        self.assertEqual(merged, {'a': {'b': 3, 'c': 2}, 'd': 4})
        self.assertEqual(base, {'a': {'b': 1, 'c': 2}})


if __name__ == '__main__':
    unittest.main()
