# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import shlex
import subprocess

from provisioning._core import Command
from provisioning._ssh import ssh
from provisioning._ssh import ssh_still


class AddUserToGroup(Command):

    def __init__(self, username, group):
        self._username = username
        self._group = group

    def __repr__(self):
        return f'{AddUserToGroup.__name__}({self._username!r}, {self._group!r})'

    def run(self, host):
        u = shlex.quote(self._username)
        r = ssh_still(host, f'id -nG {u}')
        if r.returncode != 0:
            _logger.error("%s: %s: failure: %s", host, self._username, r.stderr)
            raise subprocess.CalledProcessError(r.returncode, r.args, r.stdout, r.stderr)
        if self._group in r.stdout.decode().split():
            _logger.info("%s: %s: already in group %s", host, self._username, self._group)
            return False
        ssh(host, f'sudo usermod -aG {shlex.quote(self._group)} {u}')
        _logger.info("%s: %s: added to group %s", host, self._username, self._group)
        return True


_logger = logging.getLogger(__name__)
