# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import hashlib
import logging
import shlex
from pathlib import Path
from string import Template as _StringTemplate
from typing import Mapping
from typing import Sequence

from provisioning._core import Command
from provisioning._ssh import rsync
from provisioning._ssh import scp
from provisioning._ssh import ssh
from provisioning._ssh import ssh_input
from provisioning._ssh import ssh_still


def remote_path(path: str) -> str:
    """Quote for the remote shell, keeping home directory expansion.

    >>> remote_path('~/omi/krb5.conf')
    '~/omi/krb5.conf'
    >>> remote_path('/etc/my file')
    "'/etc/my file'"
    """
    if path == '~':
        return path
    if path.startswith('~/'):
        return '~/' + shlex.quote(path[2:])
    return shlex.quote(path)


class Synchronize(Command):

    def __init__(self, local_dir: Path, remote_dir: str, excludes: Sequence[str] = ()):
        self._local_dir = local_dir
        self._remote_dir = remote_dir
        self._excludes = excludes

    def __repr__(self):
        return f'{Synchronize.__name__}({str(self._local_dir)!r}, {self._remote_dir!r})'

    def run(self, host):
        changes = rsync(host, self._local_dir, self._remote_dir, self._excludes)
        for line in changes:
            _logger.debug("%s: %s", host, line)
        return bool(changes)


class Template(Command):
    """Render locally with string.Template and upload if different."""

    def __init__(self, template_path: Path, remote_file: str, mapping: Mapping[str, str]):
        self._template_path = template_path
        self._remote_file = remote_file
        self._mapping = mapping

    def __repr__(self):
        return f'{Template.__name__}({self._template_path.name!r}, {self._remote_file!r})'

    def render(self) -> str:
        return _StringTemplate(self._template_path.read_text()).substitute(self._mapping)

    def run(self, host):
        content = self.render()
        f = remote_path(self._remote_file)
        current = ssh_still(host, f'cat {f}')
        if current.returncode == 0 and current.stdout.decode() == content:
            return False
        ssh_input(host, f'cat > {f}', content.encode())
        return True


class EnsureDirectory(Command):

    def __init__(self, path: str):
        self._path = path

    def __repr__(self):
        return f'{EnsureDirectory.__name__}({self._path!r})'

    def run(self, host):
        d = remote_path(self._path)
        if ssh_still(host, f'test -d {d}').returncode == 0:
            return False
        ssh(host, f'mkdir -p {d}')
        return True


class Unarchive(Command):
    """Extract a local ZIP archive into a remote directory.

    A digest of the last extracted archive is kept beside the contents.
    The archive is extracted again only if it changed locally.
    """

    def __init__(self, archive: Path, remote_dir: str):
        self._archive = archive
        self._remote_dir = remote_dir

    def __repr__(self):
        return f'{Unarchive.__name__}({self._archive.name!r}, {self._remote_dir!r})'

    def run(self, host):
        digest = hashlib.sha256(self._archive.read_bytes()).hexdigest()
        d = remote_path(self._remote_dir)
        marker = f'{d}/{shlex.quote("." + self._archive.name + ".sha256")}'
        current = ssh_still(host, f'cat {marker}')
        if current.returncode == 0 and current.stdout.decode().strip() == digest:
            return False
        remote_archive = f'/tmp/{self._archive.name}'
        scp(host, self._archive, remote_archive)
        ssh(host, f'unzip -o -q {shlex.quote(remote_archive)} -d {d}')
        ssh(host, f'rm -f {shlex.quote(remote_archive)}')
        ssh_input(host, f'cat > {marker}', (digest + '\n').encode())
        _logger.info("%s: %s extracted to %s", host, self._archive.name, self._remote_dir)
        return True


_logger = logging.getLogger(__name__)
