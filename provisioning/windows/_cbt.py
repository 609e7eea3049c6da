# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging

from provisioning._core import Command
from windows_access import WindowsAccess


class CbtHardeningLevel(Command):
    """Channel binding token check of WinRM service."""

    def __init__(self, level: str = 'Strict'):
        self._level = level

    def __repr__(self):
        return f'{CbtHardeningLevel.__name__}({self._level!r})'

    def run(self, host: WindowsAccess):
        # language=PowerShell
        script = '''
            $cbtPath = 'WSMan:\\localhost\\Service\\Auth\\CbtHardeningLevel'
            $current = (Get-Item -LiteralPath $cbtPath).Value
            if ($current -ne $Level) {
                Set-Item -LiteralPath $cbtPath -Value $Level
            }
            $current
            '''
        [previous] = host.run_powershell(script, {'Level': self._level})
        if previous == self._level:
            return False
        _logger.info("%s: CBT hardening level: %s -> %s", host, previous, self._level)
        return True


_logger = logging.getLogger(__name__)
