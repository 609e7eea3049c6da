# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
from typing import Collection
from typing import Sequence

from provisioning._core import Command
from provisioning.windows._endpoints import LOOPBACK_ADAPTER_DESCRIPTION
from provisioning.windows._endpoints import EndpointTable
from windows_access import WindowsAccess

# Windows has no built-in command to install a device without a physical one.
# language=C#
_device_installer = r'''
using System;
using System.ComponentModel;
using System.Runtime.InteropServices;
using System.Text;

namespace Provisioning
{
    public static class DeviceInstaller
    {
        [StructLayout(LayoutKind.Sequential)]
        private struct SP_DEVINFO_DATA
        {
            public UInt32 cbSize;
            public Guid ClassGuid;
            public UInt32 DevInst;
            public IntPtr Reserved;
        }

        private const UInt32 DICD_GENERATE_ID = 0x1;
        private const UInt32 SPDRP_HARDWAREID = 0x1;
        private const UInt32 DIF_REGISTERDEVICE = 0x19;
        private const UInt32 INSTALLFLAG_FORCE = 0x1;

        [DllImport("setupapi.dll", CharSet = CharSet.Unicode, SetLastError = true)]
        private static extern bool SetupDiGetINFClassW(
            string InfName, out Guid ClassGuid, StringBuilder ClassName, UInt32 ClassNameSize, out UInt32 RequiredSize);

        [DllImport("setupapi.dll", SetLastError = true)]
        private static extern IntPtr SetupDiCreateDeviceInfoList(ref Guid ClassGuid, IntPtr hwndParent);

        [DllImport("setupapi.dll", CharSet = CharSet.Unicode, SetLastError = true)]
        private static extern bool SetupDiCreateDeviceInfoW(
            IntPtr DeviceInfoSet, string DeviceName, ref Guid ClassGuid, string DeviceDescription,
            IntPtr hwndParent, UInt32 CreationFlags, ref SP_DEVINFO_DATA DeviceInfoData);

        [DllImport("setupapi.dll", CharSet = CharSet.Unicode, SetLastError = true)]
        private static extern bool SetupDiSetDeviceRegistryPropertyW(
            IntPtr DeviceInfoSet, ref SP_DEVINFO_DATA DeviceInfoData, UInt32 Property,
            byte[] PropertyBuffer, UInt32 PropertyBufferSize);

        [DllImport("setupapi.dll", SetLastError = true)]
        private static extern bool SetupDiCallClassInstaller(
            UInt32 InstallFunction, IntPtr DeviceInfoSet, ref SP_DEVINFO_DATA DeviceInfoData);

        [DllImport("setupapi.dll", SetLastError = true)]
        private static extern bool SetupDiDestroyDeviceInfoList(IntPtr DeviceInfoSet);

        [DllImport("newdev.dll", CharSet = CharSet.Unicode, SetLastError = true)]
        private static extern bool UpdateDriverForPlugAndPlayDevicesW(
            IntPtr hwndParent, string HardwareId, string FullInfPath, UInt32 InstallFlags, out bool RebootRequired);

        public static bool Install(string infPath, string hardwareId)
        {
            Guid classGuid;
            StringBuilder className = new StringBuilder(256);
            UInt32 requiredSize;
            if (!SetupDiGetINFClassW(infPath, out classGuid, className, 256, out requiredSize))
                throw new Win32Exception();
            IntPtr deviceInfoSet = SetupDiCreateDeviceInfoList(ref classGuid, IntPtr.Zero);
            if (deviceInfoSet == new IntPtr(-1))
                throw new Win32Exception();
            try
            {
                SP_DEVINFO_DATA deviceInfo = new SP_DEVINFO_DATA();
                deviceInfo.cbSize = (UInt32)Marshal.SizeOf(deviceInfo);
                if (!SetupDiCreateDeviceInfoW(
                        deviceInfoSet, className.ToString(), ref classGuid, null,
                        IntPtr.Zero, DICD_GENERATE_ID, ref deviceInfo))
                    throw new Win32Exception();
                // REG_MULTI_SZ: double null-terminated.
                byte[] hardwareIds = Encoding.Unicode.GetBytes(hardwareId + "\0\0");
                if (!SetupDiSetDeviceRegistryPropertyW(
                        deviceInfoSet, ref deviceInfo, SPDRP_HARDWAREID,
                        hardwareIds, (UInt32)hardwareIds.Length))
                    throw new Win32Exception();
                if (!SetupDiCallClassInstaller(DIF_REGISTERDEVICE, deviceInfoSet, ref deviceInfo))
                    throw new Win32Exception();
            }
            finally
            {
                SetupDiDestroyDeviceInfoList(deviceInfoSet);
            }
            bool rebootRequired;
            if (!UpdateDriverForPlugAndPlayDevicesW(
                    IntPtr.Zero, hardwareId, infPath, INSTALLFLAG_FORCE, out rebootRequired))
                throw new Win32Exception();
            return rebootRequired;
        }
    }
}
'''


def missing_adapters(desired: Sequence[str], existing: Collection[str]):
    """Names to create, in order.

    >>> missing_adapters(['A', 'A #2', 'A #3'], {'A'})
    ['A #2', 'A #3']
    """
    return [name for name in desired if name not in existing]


class CreateLoopbackAdapters(Command):
    """A loopback adapter per endpoint.

    Windows names them itself: the first one is named without a number,
    the next ones get "#2", "#3" and so on.
    """

    _inf_path = r'%WinDir%\Inf\netloop.inf'
    _hardware_id = '*msloop'

    def __init__(self, table: EndpointTable):
        self._names = [e.adapter_name for e in table]

    def __repr__(self):
        return f'{CreateLoopbackAdapters.__name__}({len(self._names)})'

    def run(self, host: WindowsAccess):
        missing = missing_adapters(self._names, self._existing(host))
        if not missing:
            return False
        _logger.info("%s: create %d loopback adapters: %s", host, len(missing), missing)
        # language=PowerShell
        script = '''
            Add-Type -TypeDefinition $Source
            $infPath = [Environment]::ExpandEnvironmentVariables($InfPath)
            for ($i = 0; $i -lt $Count; $i++) {
                [Provisioning.DeviceInstaller]::Install($infPath, $HardwareId)
            }
            '''
        reboot_required = host.run_powershell(script, {
            'Source': _device_installer,
            'InfPath': self._inf_path,
            'HardwareId': self._hardware_id,
            'Count': len(missing),
            }, timeout_sec=300)
        if any(reboot_required):
            _logger.warning("%s: driver installation asks for reboot", host)
        still_missing = missing_adapters(self._names, self._existing(host))
        if still_missing:
            raise LoopbackAdaptersMissing(f"{host}: adapters are not found after creation: {still_missing}")
        return True

    def _existing(self, host: WindowsAccess):
        # language=PowerShell
        script = '''
            Get-NetAdapter -InterfaceDescription "$Description*" | ForEach-Object { $_.InterfaceDescription }
            '''
        return set(host.run_powershell(script, {'Description': LOOPBACK_ADAPTER_DESCRIPTION}))


class LoopbackAdaptersMissing(Exception):
    pass


_logger = logging.getLogger(__name__)
