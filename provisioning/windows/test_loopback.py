# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import unittest

from provisioning.windows._cbt import CbtHardeningLevel
from provisioning.windows._endpoints import EndpointSpec
from provisioning.windows._endpoints import EndpointTable
from provisioning.windows._loopback import CreateLoopbackAdapters
from provisioning.windows._loopback import LoopbackAdaptersMissing


class _ScriptedWindows:
    """Answers to run_powershell() in turn."""

    def __init__(self, outcomes):
        self._outcomes = list(outcomes)
        self.variables = []

    def __repr__(self):
        return f'<{_ScriptedWindows.__name__}>'

    def run_powershell(self, script, variables, timeout_sec=60):
        self.variables.append(variables)
        return self._outcomes.pop(0)


_first = 'Microsoft KM-TEST Loopback Adapter'
_second = 'Microsoft KM-TEST Loopback Adapter #2'
_third = 'Microsoft KM-TEST Loopback Adapter #3'


class TestCreateLoopbackAdapters(unittest.TestCase):

    def setUp(self):
        self.command = CreateLoopbackAdapters(EndpointTable([
            EndpointSpec('cbt-sha1'),
            EndpointSpec('cbt-sha256'),
            EndpointSpec('cbt-sha384'),
            ], 29900))

    def test_all_exist(self):
        host = _ScriptedWindows([[_first, _second, _third]])
        self.assertFalse(self.command.run(host))
        self.assertEqual(len(host.variables), 1)

    def test_missing_created(self):
        host = _ScriptedWindows([[_first], [False, False], [_first, _second, _third]])
        self.assertTrue(self.command.run(host))
        [_existing, install, _check] = host.variables
        self.assertEqual(install['Count'], 2)
        self.assertEqual(install['HardwareId'], '*msloop')
        self.assertEqual(install['InfPath'], r'%WinDir%\Inf\netloop.inf')

    def test_not_found_after_creation(self):
        host = _ScriptedWindows([[], [False, False, False], [_first, _second]])
        with self.assertRaises(LoopbackAdaptersMissing):
            self.command.run(host)

    def test_reboot_requested(self):
        host = _ScriptedWindows([[_first, _second], [True], [_first, _second, _third]])
        self.assertTrue(self.command.run(host))


class TestCbtHardeningLevel(unittest.TestCase):

    def test_relaxed(self):
        host = _ScriptedWindows([['Relaxed']])
        self.assertTrue(CbtHardeningLevel().run(host))
        [variables] = host.variables
        self.assertEqual(variables, {'Level': 'Strict'})

    def test_already_strict(self):
        host = _ScriptedWindows([['Strict']])
        self.assertFalse(CbtHardeningLevel().run(host))


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)7s %(name)s %(message).5000s",
        )
    unittest.main()
