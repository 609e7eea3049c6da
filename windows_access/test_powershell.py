# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import base64
import json
import logging
import unittest
from textwrap import dedent

from windows_access._command import Run
from windows_access._command import Shell
from windows_access._powershell import PowerShellCommunicationError
from windows_access._powershell import PowershellError
from windows_access._powershell import power_shell_augment_script
from windows_access._powershell import run_powershell_script
from windows_access._winrm_shell import WinRMShell


class _FinishedRun(Run):

    def __init__(self, args, stdout: bytes, stderr: bytes = b''):
        super().__init__(args)
        self._chunks = [(stdout, stderr), (None, None)]
        self.stdin = b''
        self.stdin_closed = False

    @property
    def returncode(self):
        return 0

    def send(self, data, is_last=False):
        if self.stdin_closed:
            raise RuntimeError("Stdin is closed")
        self.stdin += data
        self.stdin_closed = is_last
        return len(data)

    def receive(self, timeout_sec):
        return self._chunks.pop(0) if self._chunks else (None, None)

    def kill(self):
        pass

    def close(self):
        pass


class _CannedShell(Shell):

    def __init__(self, stdout: bytes, stderr: bytes = b''):
        self._stdout = stdout
        self._stderr = stderr
        self.runs = []

    def Popen(self, args):
        run = _FinishedRun(args, self._stdout, self._stderr)
        self.runs.append(run)
        return run

    def scripts(self):
        return [base64.b64decode(run.stdin).decode('utf-8') for run in self.runs]


class TestAugmentScript(unittest.TestCase):

    def test_variables_sorted(self):
        # language=PowerShell
        body = '''
            Do-This -Carefully $BThing
            Make-It -Real -Quality $AQuality
            '''
        variables = {'BThing': ['Something', 'Another'], 'AQuality': 100}
        script = power_shell_augment_script(body, variables)
        # language=PowerShell
        expected_head = dedent('''
            $ProgressPreference = 'SilentlyContinue'
            $ErrorActionPreference = 'Stop'
            function Execute-Script ($AQuality, $BThing) {
                Do-This -Carefully $BThing
                Make-It -Real -Quality $AQuality
            }
            try {
                $Result = Execute-Script `
                    -AQuality:(ConvertFrom-Json '100') `
                    -BThing:(ConvertFrom-Json '[
                        "Something",
                        "Another"
                    ]')
            ''').strip()
        self.assertTrue(script.startswith(expected_head), script)

    def test_quotes_escaped(self):
        script = power_shell_augment_script('$name', {'name': "it's"})
        self.assertIn("""-name:(ConvertFrom-Json '"it''s"')""", script)


class TestRunScript(unittest.TestCase):

    def test_success(self):
        shell = _CannedShell(json.dumps(['success', [{'Port': 29901}]]).encode())
        result = run_powershell_script(shell, 'Get-Something $x', {'x': 1})
        self.assertEqual(result, [{'Port': 29901}])
        [script] = shell.scripts()
        self.assertIn('Get-Something $x', script)
        [run] = shell.runs
        self.assertTrue(run.stdin_closed)

    def test_long_script_via_stdin(self):
        shell = _CannedShell(json.dumps(['success', []]).encode())
        content = base64.b64encode(bytes(range(256)) * 200).decode('ascii')
        run_powershell_script(shell, '[IO.File]::WriteAllBytes($Path, $Content)', {
            'Path': r'C:\Windows\TEMP\cert_setup\verification.pfx',
            'Content': content,
            })
        [run] = shell.runs
        command_line = WinRMShell.args_to_command_line(run.args)
        self.assertLessEqual(len(command_line), 8191)
        self.assertNotIn(content, command_line)
        [script] = shell.scripts()
        self.assertIn(content, script)
        self.assertTrue(run.stdin_closed)

    def test_non_ascii_script(self):
        shell = _CannedShell(json.dumps(['success', []]).encode())
        run_powershell_script(shell, 'Set-Password $Password', {'Password': 'Pässwörd'})
        [script] = shell.scripts()
        self.assertIn('Pässwörd', script)

    def test_failure(self):
        exception_info = ['System.InvalidOperationException', 'InvalidOperation', "Oops"]
        shell = _CannedShell(json.dumps(['fail', exception_info]).encode())
        with self.assertRaises(PowershellError) as raised:
            run_powershell_script(shell, 'throw "Oops"', {})
        self.assertEqual(raised.exception.message, "Oops")
        self.assertEqual(raised.exception.category, 'InvalidOperation')

    def test_empty_stdout(self):
        shell = _CannedShell(b'', b'Out of memory')
        with self.assertRaises(PowerShellCommunicationError):
            run_powershell_script(shell, '1', {})

    def test_garbage_stdout(self):
        shell = _CannedShell(b'Not a JSON')
        with self.assertRaises(PowerShellCommunicationError):
            run_powershell_script(shell, '1', {})


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)7s %(name)s %(message).5000s",
        )
    unittest.main()
