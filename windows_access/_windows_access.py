# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import time
from contextlib import closing
from http.client import HTTPConnection
from typing import Any
from typing import Mapping
from typing import Optional

from windows_access._powershell import run_powershell_script
from windows_access._winrm import WinRM
from windows_access._winrm import WinRMOperationTimeoutError
from windows_access._winrm import WinRmHttpResponseTimeout
from windows_access._winrm import WinRmUnauthorized
from windows_access._winrm_shell import WinRMShell

_logger = logging.getLogger(__name__)


class WindowsAccess:
    """High-level access to a remote Windows.

    WMI objects and CMD commands via WinRM,
    PowerShell scripts via CMD.
    """

    WINRM_PORT = 5985

    def __init__(self, address: str, username: str, password: str, port: int = WINRM_PORT):
        self.address = address
        self.winrm = WinRM(address, port, username, password)
        self._port = port
        self._shell: Optional[WinRMShell] = None

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.winrm.netloc()}>'

    def winrm_shell(self) -> WinRMShell:
        if self._shell is None:
            self._shell = WinRMShell(self.winrm)
        return self._shell

    def run(self, command, timeout_sec: float = 60, check=True):
        return self.winrm_shell().run(command, timeout_sec=timeout_sec, check=check)

    def run_powershell(self, script: str, variables: Mapping[str, Any], timeout_sec: float = 60):
        return run_powershell_script(self.winrm_shell(), script, variables, timeout_sec=timeout_sec)

    def close(self):
        if self._shell is not None:
            self._shell.close()
            self._shell = None

    def is_ready(self) -> bool:
        try:
            # Right after boot starts, WinRM requests may hang for a minute.
            # A short HTTP request tells whether the service is listening.
            with closing(HTTPConnection(self.address, self._port, timeout=1)) as connection:
                connection.request('HEAD', '/')
                connection.getresponse()
        except (ConnectionError, TimeoutError):
            return False
        try:
            self.run(['whoami'])
        except (WinRMOperationTimeoutError, WinRmUnauthorized, ConnectionError):
            self.close()
            return False
        return True

    def _last_boot_up_time(self) -> str:
        return self.winrm.wsman_get('Win32_OperatingSystem', {})['LastBootUpTime']

    def reboot(self, timeout_sec: float = 600):
        """Reboot and return when OS has come back."""
        boot_time_before = self._last_boot_up_time()
        self.winrm.wsman_invoke('Win32_OperatingSystem', {}, 'Reboot', {})
        self.close()
        _logger.info("%s: sleep while definitely rebooting", self)
        time.sleep(5)
        started_at = time.monotonic()
        while True:
            if time.monotonic() - started_at > timeout_sec:
                raise RuntimeError(f"{self}: not back after reboot in {timeout_sec} seconds")
            try:
                boot_time_after = self._last_boot_up_time()
            except (ConnectionError, TimeoutError, WinRmHttpResponseTimeout):
                _logger.debug("%s: still offline", self)
                time.sleep(5)
                continue
            if boot_time_after != boot_time_before:
                break
            _logger.debug("%s: still online; sleep while OS is going down", self)
            time.sleep(5)
        while not self.is_ready():
            if time.monotonic() - started_at > timeout_sec:
                raise RuntimeError(f"{self}: WinRM is not ready in {timeout_sec} seconds")
            time.sleep(5)
        _logger.info("%s: rebooted", self)
