from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import TestCase

from pydantic import ValidationError

from tpsbench.config import deep_update, env_overrides, load_config


class TestLoadConfig(TestCase):
    def test_packaged_defaults(self):
        c = load_config(environ={})
        self.assertEqual(c.num_txns, 10_000)
        self.assertEqual(c.num_validators, 4)
        self.assertEqual(c.entry_node, 0)
        self.assertEqual(c.poll.interval, 0.5)
        self.assertEqual(c.funding_account.first_sequence, 1)
        self.assertIsNone(c.timeout.overall)
        self.assertEqual(c.timeout.connect, 10.0)

    def test_env_overrides(self):
        c = load_config(environ={"NUM_TXNS": "25", "BASE_PORT": "60000", "RIPPLED_BIN": "/opt/rippled"})
        self.assertEqual(c.num_txns, 25)
        self.assertEqual(c.network.base_port, 60000)
        self.assertEqual(c.network.rippled_bin, "/opt/rippled")

    def test_layering_order(self):
        with TemporaryDirectory() as d:
            user = Path(d) / "bench.toml"
            user.write_text('num_txns = 50\n[poll]\ninterval = 1.5\n')
            c = load_config(user, {"num_txns": 7}, environ={"NUM_TXNS": "30"})
        self.assertEqual(c.num_txns, 7)
        self.assertEqual(c.poll.interval, 1.5)
        self.assertTrue(c.poll.concurrent)

    def test_entry_node_must_exist(self):
        with self.assertRaises(ValidationError):
            load_config(overrides={"num_validators": 2, "entry_node": 2}, environ={})

    def test_rejects_non_positive_counts(self):
        with self.assertRaises(ValidationError):
            load_config(overrides={"num_validators": 0}, environ={})
        with self.assertRaises(ValidationError):
            load_config(overrides={"poll": {"interval": 0}}, environ={})

    def test_validator_seeds_checked(self):
        with self.assertRaises(ValidationError):
            load_config(overrides={"num_validators": 2, "network": {"validator_seeds": ["sa", "sa"]}}, environ={})
        with self.assertRaises(ValidationError):
            load_config(overrides={"num_validators": 3, "network": {"validator_seeds": ["sa", "sb"]}}, environ={})


class TestHelpers(TestCase):
    def test_deep_update_merges_tables(self):
        base = {"a": 1, "t": {"x": 1, "y": 2}}
        deep_update(base, {"t": {"y": 3}, "b": 2})
        self.assertEqual(base, {"a": 1, "b": 2, "t": {"x": 1, "y": 3}})

    def test_env_overrides_ignores_unset(self):
        self.assertEqual(env_overrides({}), {})
        self.assertEqual(env_overrides({"NUM_VALIDATORS": "5"}), {"num_validators": "5"})
