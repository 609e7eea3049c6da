# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from __future__ import annotations

import base64
import logging
import os
import subprocess

from windows_access._command import Run
from windows_access._command import Shell
from windows_access._winrm import WinRM
from windows_access._winrm import WinRMOperationTimeoutError
from windows_access._winrm import WinRmHttpResponseTimeout
from windows_access._wsman_xml import OptionSet
from windows_access._wsman_xml import aliases

_logger = logging.getLogger(__name__)

_cmd_uri = 'http://schemas.microsoft.com/wbem/wsman/1/windows/shell/cmd'
_command_state = aliases['rsp'] + '/CommandState/'


class WinRMShell(Shell):
    """WinRS shell: CMD commands over WS-Management."""

    def __init__(self, winrm: WinRM, codepage=65001):  # UTF-8.
        self._winrm = winrm
        response = self._winrm.act(
            _cmd_uri,
            'http://schemas.xmlsoap.org/ws/2004/09/transfer/Create',
            {'rsp:Shell': {'rsp:InputStreams': 'stdin', 'rsp:OutputStreams': 'stdout stderr'}},
            options=OptionSet({'WINRS_NOPROFILE': 'FALSE', 'WINRS_CODEPAGE': str(codepage)}),
            )
        self._shell_id = response['rsp:Shell']['rsp:ShellId']

    def __repr__(self):
        return f'<WinRMShell {self._shell_id} on {self._winrm}>'

    def close(self):
        try:
            self._winrm.act(
                _cmd_uri,
                'http://schemas.xmlsoap.org/ws/2004/09/transfer/Delete',
                {},
                {'ShellId': self._shell_id},
                )
        except ConnectionError:
            _logger.info("%s: already closed", self)

    def invoke(self, method, body, timeout_sec=None):
        return self._winrm.act(
            _cmd_uri,
            f'http://schemas.microsoft.com/wbem/wsman/1/windows/shell/{method}',
            body,
            {'ShellId': self._shell_id},
            timeout_sec=timeout_sec,
            )

    def Popen(self, args):
        return _WinRMRun(self, args)

    @staticmethod
    def args_to_command_line(args) -> str:
        if isinstance(args, str):
            args = [args]
            quote = False
        else:
            quote = True
        parts = []
        for arg in args:
            if isinstance(arg, (os.PathLike, int)):
                arg = os.fspath(arg) if isinstance(arg, os.PathLike) else str(arg)
            if not isinstance(arg, str):
                raise TypeError(f"Unsupported arg type: {arg!r}")
            if '\n' in arg:
                raise ValueError(f"WinRS cannot pass newlines: {arg!r}")
            parts.append(arg)
        return subprocess.list2cmdline(parts) if quote else parts[0]


class _WinRMRun(Run):

    def __init__(self, shell: WinRMShell, args):
        super().__init__(args)
        self._shell = shell
        command_line = shell.args_to_command_line(args)
        _logger.info("Command: %s", command_line)
        # Commands run under `cmd /c`: quote as usual, then put quotes around.
        response = shell.invoke('Command', {
            'rsp:CommandLine': {'rsp:Command': '"' + command_line + '"'},
            })
        self._command_id = response['rsp:CommandResponse']['rsp:CommandId']
        self._returncode = None

    @property
    def returncode(self):
        return self._returncode

    def send(self, data, is_last=False):
        # See: https://msdn.microsoft.com/en-us/library/cc251742.aspx
        stream = {
            '@Name': 'stdin',
            '@CommandId': self._command_id,
            '#text': base64.b64encode(data).decode('ascii'),
            }
        if is_last:
            stream['@End'] = 'true'
        self._shell.invoke('Send', {'rsp:Send': {'rsp:Stream': stream}})
        return len(data)

    def receive(self, timeout_sec):
        if self._returncode is not None:
            return None, None
        try:
            response = self._shell.invoke('Receive', {
                'rsp:Receive': {
                    'rsp:DesiredStream': {'@CommandId': self._command_id, '#text': 'stdout stderr'},
                    },
                }, timeout_sec=timeout_sec)
        except (WinRMOperationTimeoutError, WinRmHttpResponseTimeout):
            # No output during the timeout period.
            return b'', b''
        received = response['rsp:ReceiveResponse']
        state = received['rsp:CommandState']
        if state['@State'] == _command_state + 'Done':
            self._returncode = int(state['rsp:ExitCode'])
        elif state['@State'] not in (_command_state + 'Running', _command_state + 'Pending'):
            raise RuntimeError(f"Command in unexpected state: {state}")
        stdout = stderr = b''
        # Streams are absent if closed while the process is still running.
        for stream in received.get('rsp:Stream', []):
            data = base64.b64decode(stream.get('#text') or '')
            if stream['@Name'] == 'stdout':
                stdout += data
            elif stream['@Name'] == 'stderr':
                stderr += data
        if self._returncode is not None:
            # Last chunks come together with the exit code.
            return stdout or None, stderr or None
        return stdout, stderr

    def _signal(self, name):
        # See: https://msdn.microsoft.com/en-us/library/cc761132.aspx
        self._shell.invoke('Signal', {
            'rsp:Signal': {
                '@CommandId': self._command_id,
                'rsp:Code': f'http://schemas.microsoft.com/wbem/wsman/1/windows/shell/signal/{name}',
                },
            })

    def kill(self):
        self._signal('ctrl_break')

    def close(self):
        self._signal('terminate')
