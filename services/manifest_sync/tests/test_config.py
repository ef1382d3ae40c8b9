import unittest
from unittest.mock import patch

from services.manifest_sync.config import get_settings
from services.manifest_sync.errors import ConfigurationError
from services.manifest_sync.tests.fakes import JOB_ENV


class SettingsTests(unittest.TestCase):
    def tearDown(self) -> None:
        get_settings.cache_clear()

    def test_reads_job_environment(self) -> None:
        with patch.dict('os.environ', JOB_ENV, clear=True):
            get_settings.cache_clear()
            settings = get_settings()
            settings.validate()

        self.assertEqual(settings.rpc_url, 'https://eth-mainnet.g.alchemy.com/v2/alchemy-key')
        self.assertEqual(settings.composite_project_id, 7)
        self.assertEqual(settings.indexer_backend, 'hasura')
        self.assertEqual(settings.indexer_url, 'https://data.test/v1/graphql')
        self.assertEqual(settings.page_size, 900)
        self.assertTrue(settings.notify_enabled)
        self.assertFalse(settings.bootstrap_empty_manifest)

    def test_subgraph_backend_uses_graph_endpoint(self) -> None:
        env = dict(JOB_ENV, INDEXER_BACKEND='subgraph', AB_GRAPH_ENDPOINT='https://graph.test', NOTIFY_ENABLED='false')
        with patch.dict('os.environ', env, clear=True):
            get_settings.cache_clear()
            settings = get_settings()

        self.assertEqual(settings.indexer_url, 'https://graph.test')
        self.assertFalse(settings.notify_enabled)

    def test_unknown_backend_is_rejected(self) -> None:
        with patch.dict('os.environ', dict(JOB_ENV, INDEXER_BACKEND='dune'), clear=True):
            get_settings.cache_clear()
            with self.assertRaises(ConfigurationError):
                get_settings()

    def test_validate_lists_missing_values(self) -> None:
        env = {key: value for key, value in JOB_ENV.items() if key not in {'PINATA_API_KEY', 'PRIVATE_KEY'}}
        with patch.dict('os.environ', env, clear=True):
            get_settings.cache_clear()
            settings = get_settings()

        with self.assertRaises(ConfigurationError) as ctx:
            settings.validate()
        self.assertIn('PINATA_API_KEY', str(ctx.exception))
        self.assertIn('PRIVATE_KEY', str(ctx.exception))

        with self.assertRaises(ConfigurationError) as ctx:
            settings.validate(require_signer=False)
        self.assertNotIn('PRIVATE_KEY', str(ctx.exception))

    def test_non_integer_knob_is_rejected(self) -> None:
        with patch.dict('os.environ', dict(JOB_ENV, RESOLVE_CONCURRENCY='many'), clear=True):
            get_settings.cache_clear()
            with self.assertRaises(ConfigurationError):
                get_settings()

    def test_malformed_addresses_are_rejected(self) -> None:
        env = dict(JOB_ENV, DOTS_MINTER_CONTRACT_ADDRESS='0xnot-an-address')
        with patch.dict('os.environ', env, clear=True):
            get_settings.cache_clear()
            settings = get_settings()

        with self.assertRaises(ConfigurationError) as ctx:
            settings.validate()
        self.assertIn('DOTS_MINTER_CONTRACT_ADDRESS', str(ctx.exception))

    def test_malformed_private_key_is_rejected_even_for_dry_runs(self) -> None:
        with patch.dict('os.environ', dict(JOB_ENV, PRIVATE_KEY='not-a-key'), clear=True):
            get_settings.cache_clear()
            settings = get_settings()

        with self.assertRaises(ConfigurationError) as ctx:
            settings.validate(require_signer=False)
        self.assertIn('PRIVATE_KEY', str(ctx.exception))
