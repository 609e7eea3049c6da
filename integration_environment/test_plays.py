# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import tempfile
import unittest
from pathlib import Path

from integration_environment._config import ConfigError
from integration_environment._config import EnvironmentConfig
from integration_environment._config import read_config
from integration_environment._plays import MissingArtifact
from integration_environment._plays import all_plays
from integration_environment._plays import check_artifact
from integration_environment._plays import endpoint_table
from integration_environment._plays import needs_artifact
from integration_environment._plays import select
from provisioning import EnsureDirectory
from provisioning import Unarchive
from provisioning.windows import GenerateCertificates
from provisioning.windows import VerifyDomainLogon

_defaults = Path(__file__).with_name('config.ini')


class _ConfigTestCase(unittest.TestCase):

    def setUp(self):
        self._temp_dir = tempfile.TemporaryDirectory()
        self.dir = Path(self._temp_dir.name)
        override = self.dir / 'override.ini'
        override.write_text(
            '[windows]\n'
            'address = 10.0.0.5\n'
            '[paths]\n'
            f'artifact = {self.dir / "PSWSMan.zip"}\n')
        self.config = EnvironmentConfig(read_config(_defaults, override, self.dir / 'absent.ini'))
        self.plays = all_plays(self.config)

    def tearDown(self):
        self._temp_dir.cleanup()


class TestConfig(_ConfigTestCase):

    def test_override(self):
        self.assertEqual(self.config.windows_address, '10.0.0.5')
        self.assertEqual(self.config.domain_name, 'domain.test')
        self.assertEqual(self.config.host_fqdn, 'DC01.domain.test')

    def test_relative_path(self):
        self.assertEqual(self.config.cert_dir, _defaults.parent / 'cert_setup')

    def test_missing_value(self):
        config = EnvironmentConfig(read_config(self.dir / 'absent.ini'))
        with self.assertRaises(ConfigError):
            _ = config.windows_address

    def test_endpoint_table(self):
        table = endpoint_table(self.config)
        self.assertEqual(len(table), 10)
        self.assertEqual(table['cbt-sha256'].external_port, 29902)
        self.assertEqual(table['verification-other-ca'].external_port, 29918)


class TestTags(_ConfigTestCase):

    def _selected(self, tags):
        return {play.name: commands for play, commands in select(self.plays, tags)}

    def test_everything(self):
        selected = self._selected([])
        [windows, linux] = self.plays
        self.assertEqual(list(selected), [windows.name, linux.name])
        self.assertEqual(len(selected[windows.name]), len(windows.steps))
        self.assertEqual(len(selected[linux.name]), len(linux.steps))

    def test_windows(self):
        [windows, _linux] = self.plays
        selected = self._selected(['windows'])
        self.assertEqual(list(selected), [windows.name])
        self.assertIsInstance(selected[windows.name][0], GenerateCertificates)
        self.assertIsInstance(selected[windows.name][-1], VerifyDomainLogon)

    def test_linux_includes_artifacts(self):
        [_windows, linux] = self.plays
        selected = self._selected(['linux'])
        self.assertEqual(list(selected), [linux.name])
        self.assertEqual(len(selected[linux.name]), len(linux.steps))
        self.assertIsInstance(selected[linux.name][-1], Unarchive)

    def test_artifacts_only(self):
        [_windows, linux] = self.plays
        selected = self._selected(['build_artifacts'])
        self.assertEqual(list(selected), [linux.name])
        [ensure_directory, unarchive] = selected[linux.name]
        self.assertIsInstance(ensure_directory, EnsureDirectory)
        self.assertIsInstance(unarchive, Unarchive)


class TestArtifact(_ConfigTestCase):

    def test_needed(self):
        self.assertTrue(needs_artifact(self.plays, []))
        self.assertTrue(needs_artifact(self.plays, ['linux']))
        self.assertTrue(needs_artifact(self.plays, ['build_artifacts']))
        self.assertFalse(needs_artifact(self.plays, ['windows']))

    def test_missing(self):
        with self.assertRaises(MissingArtifact) as raised:
            check_artifact(self.config)
        self.assertIn('PSWSMan.zip', str(raised.exception))

    def test_present(self):
        (self.dir / 'PSWSMan.zip').write_bytes(b'PK\x05\x06' + b'\x00' * 18)
        check_artifact(self.config)


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)7s %(name)s %(message).5000s",
        )
    unittest.main()
