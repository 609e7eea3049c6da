# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import re
import shlex
from typing import Sequence

from provisioning._core import Command
from provisioning._ssh import ssh
from provisioning._ssh import ssh_input
from provisioning._ssh import ssh_still


def apt_changed_anything(output: str) -> bool:
    """Tell by the summary line whether apt-get did something.

    >>> apt_changed_anything('0 upgraded, 0 newly installed, 0 to remove and 0 not upgraded.')
    False
    >>> apt_changed_anything('3 upgraded, 1 newly installed, 0 to remove and 0 not upgraded.')
    True
    >>> apt_changed_anything('curl is already the newest version (7.88.1-10).')
    False
    """
    m = re.search(r'^(\d+) upgraded, (\d+) newly installed, (\d+) to remove', output, re.MULTILINE)
    if m is None:
        return False
    return any(int(n) > 0 for n in m.groups())


class AptUpgrade(Command):

    def __repr__(self):
        return f'{AptUpgrade.__name__}()'

    def run(self, host):
        ssh(host, 'sudo apt-get update')
        r = ssh(host, 'sudo DEBIAN_FRONTEND=noninteractive apt-get upgrade -y')
        return apt_changed_anything(r.stdout.decode(errors='backslashreplace'))


class AptInstall(Command):
    """Install packages or upgrade them to the latest version."""

    def __init__(self, packages: Sequence[str]):
        self._packages = packages

    def __repr__(self):
        return f'{AptInstall.__name__}({self._packages!r})'

    def run(self, host):
        packages = ' '.join(shlex.quote(p) for p in self._packages)
        r = ssh(host, f'sudo DEBIAN_FRONTEND=noninteractive apt-get install -y {packages}')
        return apt_changed_anything(r.stdout.decode(errors='backslashreplace'))


class AptKey(Command):
    """Download the repository signing key once."""

    def __init__(self, url: str, path: str):
        self._url = url
        self._path = path

    def __repr__(self):
        return f'{AptKey.__name__}({self._url!r}, {self._path!r})'

    def run(self, host):
        p = shlex.quote(self._path)
        if ssh_still(host, f'test -s {p}').returncode == 0:
            return False
        ssh(host, 'sudo install -m 0755 -d /etc/apt/keyrings')
        ssh(host, f'sudo curl -fsSL {shlex.quote(self._url)} -o {p}')
        ssh(host, f'sudo chmod a+r {p}')
        return True


class AptRepository(Command):
    """Sources list with a single line; apt index is refreshed on change.

    The line may refer to the release codename of the host as {codename}.
    """

    def __init__(self, path: str, line: str):
        self._path = path
        self._line = line

    def __repr__(self):
        return f'{AptRepository.__name__}({self._path!r}, {self._line!r})'

    def run(self, host):
        codename = ssh(host, 'lsb_release -cs').stdout.decode().strip()
        line = self._line.format(codename=codename)
        p = shlex.quote(self._path)
        current = ssh_still(host, f'cat {p}')
        if current.returncode == 0 and current.stdout.decode().strip() == line:
            return False
        ssh_input(host, f'sudo tee {p} >/dev/null', (line + '\n').encode())
        ssh(host, 'sudo apt-get update')
        _logger.info("%s: %s: %s", host, self._path, line)
        return True


class ServiceEnabled(Command):
    """Service starts on boot and is running now."""

    def __init__(self, name: str):
        self._name = name

    def __repr__(self):
        return f'{ServiceEnabled.__name__}({self._name!r})'

    def run(self, host):
        n = shlex.quote(self._name)
        enabled = ssh_still(host, f'systemctl is-enabled --quiet {n}').returncode == 0
        active = ssh_still(host, f'systemctl is-active --quiet {n}').returncode == 0
        if enabled and active:
            return False
        ssh(host, f'sudo systemctl enable --now {n}')
        return True


_logger = logging.getLogger(__name__)
