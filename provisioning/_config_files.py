# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import shlex
import subprocess
from typing import Sequence

from provisioning._core import Command
from provisioning._core import CompositeCommand
from provisioning._core import Run
from provisioning._ssh import ssh
from provisioning._ssh import ssh_still


def has_line(text: str, line: str) -> bool:
    """Whole line match, trailing whitespace and line endings ignored."""
    return any(existing.rstrip() == line.rstrip() for existing in text.splitlines())


class LineInFile(Command):
    """Append the line unless the file already has exactly such a line."""

    def __init__(self, path: str, line: str):
        self._path = path
        self._line = line

    def __repr__(self):
        return f'{LineInFile.__name__}({self._path!r}, {self._line!r})'

    def run(self, host):
        p = shlex.quote(self._path)
        r = ssh_still(host, f'sudo cat {p}')
        text = ''
        if r.returncode == 0:
            text = r.stdout.decode(errors='backslashreplace')
            if has_line(text, self._line):
                return False
        elif b'no such file' not in r.stderr.lower():
            raise subprocess.CalledProcessError(r.returncode, r.args, r.stdout, r.stderr)
        addition = self._line + '\n'
        if text and not text.endswith('\n'):
            addition = '\n' + addition
        ssh(host, f'printf %s {shlex.quote(addition)} | sudo tee -a {p} >/dev/null')
        _logger.info("%s: %s: added %r", host, self._path, self._line)
        return True


class ResolvConfHead(CompositeCommand):
    """Nameservers go first; resolv.conf is regenerated only if head changed."""

    _path = '/etc/resolvconf/resolv.conf.d/head'

    def __init__(self, nameservers: Sequence[str]):
        super().__init__([LineInFile(self._path, f'nameserver {ns}') for ns in nameservers])
        self._nameservers = list(nameservers)
        self._regenerate = Run('sudo resolvconf -u')

    def __repr__(self):
        return f'{ResolvConfHead.__name__}({self._nameservers!r})'

    def run(self, host):
        changed = super().run(host)
        if changed:
            self._regenerate.run(host)
        return changed


_logger = logging.getLogger(__name__)
