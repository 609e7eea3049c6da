# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from windows_access._command import RemoteCalledProcessError
from windows_access._command import Run
from windows_access._command import Shell
from windows_access._powershell import PowerShellCommunicationError
from windows_access._powershell import PowershellError
from windows_access._powershell import power_shell_augment_script
from windows_access._powershell import run_powershell_script
from windows_access._windows_access import WindowsAccess
from windows_access._winrm import SoapFault
from windows_access._winrm import WinRM
from windows_access._winrm import WinRMOperationTimeoutError
from windows_access._winrm import WinRmUnauthorized
from windows_access._winrm import WmiError
from windows_access._winrm import WmiFault
from windows_access._winrm import WmiInvokeFailed
from windows_access._winrm import WmiObjectNotFound
from windows_access._wsman_xml import Reference

__all__ = [
    'PowerShellCommunicationError',
    'PowershellError',
    'Reference',
    'RemoteCalledProcessError',
    'Run',
    'Shell',
    'SoapFault',
    'WinRM',
    'WinRMOperationTimeoutError',
    'WinRmUnauthorized',
    'WindowsAccess',
    'WmiError',
    'WmiFault',
    'WmiInvokeFailed',
    'WmiObjectNotFound',
    'power_shell_augment_script',
    'run_powershell_script',
    ]
