# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import os
import shlex
import subprocess
from typing import Sequence


def ssh(host: str, command: str):
    r = ssh_still(host, command)
    r.check_returncode()
    return r


def ssh_still(host: str, command: str):
    """Run and return the outcome whatever the exit status is."""
    r = subprocess.run(
        _build(host, command),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        # It may hang waiting for input when no input is actually needed.
        # See: https://github.com/PowerShell/Win32-OpenSSH/issues/1334
        stdin=subprocess.DEVNULL,
        timeout=1800,
        )
    if r.returncode == 255:
        raise SSHCannotConnect(r.stderr.decode(errors='backslashreplace'))
    return r


def ssh_input(host: str, command: str, stdin: bytes):
    r = subprocess.run(
        _build(host, command),
        input=stdin,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        timeout=600,
        )
    if r.returncode == 255:
        raise SSHCannotConnect(r.stderr.decode(errors='backslashreplace'))
    r.check_returncode()
    return r


def _build(host, command):
    # In BatchMode, execution fails if interactive input is required.
    full_command = ['ssh', '-oBatchMode=yes', host, command]
    _log(full_command)
    return full_command


def scp(host: str, local: os.PathLike, remote: str = ''):
    command = ['scp', '-oBatchMode=yes', local, host + ':' + remote]
    _log(command)
    r = subprocess.run(command)
    if r.returncode == 255:
        raise SSHCannotConnect()
    r.check_returncode()


def rsync(host: str, local_dir: os.PathLike, remote_dir: str, excludes: Sequence[str] = ()):
    """Mirror a local directory; return itemized changes."""
    command = [
        'rsync',
        '--archive', '--compress', '--itemize-changes',
        '-e', 'ssh -oBatchMode=yes',
        *[f'--exclude={pattern}' for pattern in excludes],
        # Trailing slash: copy contents, not the directory itself.
        os.fspath(local_dir).rstrip('/\\') + '/',
        host + ':' + remote_dir,
        ]
    _log(command)
    r = subprocess.run(command, stdout=subprocess.PIPE)
    if r.returncode == 255:
        raise SSHCannotConnect()
    r.check_returncode()
    return r.stdout.decode(errors='backslashreplace').splitlines()


def _log(command):
    # shlex.join() only works with Iterable[str] and fails with PathLike.
    command = [os.fspath(arg) for arg in command]
    if os.name == 'nt':
        _logger.info("Run: %s", subprocess.list2cmdline(command))
    else:
        _logger.info("Run: %s", shlex.join(command))


class SSHCannotConnect(Exception):
    pass


_logger = logging.getLogger(__name__)
