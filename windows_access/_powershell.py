# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import base64
import json
import logging
from pathlib import PurePath
from textwrap import dedent
from typing import Any
from typing import Mapping

from windows_access._command import Shell

_logger = logging.getLogger(__name__)


class PowershellError(Exception):

    def __init__(self, type_name, category, message):
        super().__init__(f'{type_name}: {message}')
        self.type_name = type_name
        self.category = category
        self.message = message


class PowerShellCommunicationError(Exception):
    pass


def encoded_command(script: str):
    return [
        'PowerShell',
        '-NoProfile', '-NonInteractive', '-ExecutionPolicy', 'Unrestricted',
        '-EncodedCommand', base64.b64encode(script.encode('utf_16_le')).decode('ascii'),
        ]


# WinRS rejects command lines longer than 8191 characters.
# The script itself is sent to stdin, only this loader is on the command line.
# language=PowerShell
_stdin_loader = (
    "$Encoded = [Console]::In.ReadToEnd(); "
    "$Script = [Text.Encoding]::UTF8.GetString([Convert]::FromBase64String($Encoded)); "
    "& ([ScriptBlock]::Create($Script))"
    )

# Each Send message must fit into MaxEnvelopeSizekb.
_stdin_chunk_size = 64 * 1024


def stdin_script_command():
    return encoded_command(_stdin_loader)


def run_powershell_script(
        shell: Shell,
        script: str,
        variables: Mapping[str, Any],
        timeout_sec: float = 60,
        ):
    """Run script body as a function; return its output converted from JSON.

    Output is always a list: $null becomes empty, a single object
    becomes a list with one element.
    """
    augmented = power_shell_augment_script(script, variables)
    _logger.debug("Run\n%s", augmented)
    payload = base64.b64encode(augmented.encode('utf-8'))
    with shell.Popen(stdin_script_command()) as run:
        for offset in range(0, len(payload), _stdin_chunk_size):
            is_last = offset + _stdin_chunk_size >= len(payload)
            run.send(payload[offset:offset + _stdin_chunk_size], is_last=is_last)
        stdout, stderr = run.communicate(timeout_sec=timeout_sec)
    if not stdout:
        raise PowerShellCommunicationError(
            "Empty stdout; PowerShell couldn't run; stderr:\n"
            + stderr.decode(errors='replace'))
    try:
        outcome, data = json.loads(stdout.decode())
    except ValueError as e:
        raise PowerShellCommunicationError(f"Cannot decode stdout: {e}")
    if outcome == 'success':
        return data
    raise PowershellError(*data)


def power_shell_augment_script(body: str, variables: Mapping[str, Any]) -> str:
    """Wrap script into a function and pass variables as JSON.

    >>> print(power_shell_augment_script('$a + 1', {'a': 2}))
    $ProgressPreference = 'SilentlyContinue'
    $ErrorActionPreference = 'Stop'
    function Execute-Script ($a) {
        $a + 1
    }
    try {
        $Result = Execute-Script `
            -a:(ConvertFrom-Json '2')
        # @( $Result ) converts $null to an empty array and does not nest arrays.
        ConvertTo-Json -Depth 5 @( 'success', @( $Result ) )
    } catch {
        $ExceptionInfo = @(
            $_.Exception.GetType().FullName,
            $_.CategoryInfo.Category.ToString(),
            $_.Exception.Message
        )
        ConvertTo-Json @( 'fail', $ExceptionInfo )
    }
    """
    parameters = []
    arguments = []
    for name, value in sorted(variables.items()):
        if isinstance(value, PurePath):
            value = str(value)
        parameters.append(f'${name}')
        value_json = json.dumps(value, indent=4).replace("'", "''")
        arguments.append(f"-{name}:(ConvertFrom-Json '{value_json}')")
    invocation = ' `\n'.join(['Execute-Script', *arguments])
    # language=PowerShell
    template = '''
        $ProgressPreference = 'SilentlyContinue'
        $ErrorActionPreference = 'Stop'
        function Execute-Script (<# Parameters #>) {
            <# Body #>
        }
        try {
            $Result = <# Invocation #>
            # @( $Result ) converts $null to an empty array and does not nest arrays.
            ConvertTo-Json -Depth 5 @( 'success', @( $Result ) )
        } catch {
            $ExceptionInfo = @(
                $_.Exception.GetType().FullName,
                $_.CategoryInfo.Category.ToString(),
                $_.Exception.Message
            )
            ConvertTo-Json @( 'fail', $ExceptionInfo )
        }
        '''
    script = dedent(template).strip()
    script = script.replace('<# Parameters #>', ', '.join(parameters))
    script = script.replace('<# Invocation #>', _indent(invocation, ' ' * 8))
    script = script.replace('<# Body #>', _indent(dedent(body).strip(), ' ' * 4))
    return script.replace(' \n', '\n')


def _indent(text, spaces):
    return text.replace('\n', '\n' + spaces)
