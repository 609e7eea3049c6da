# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
from typing import Any
from typing import Collection
from typing import Mapping
from typing import Sequence
from typing import Tuple

from provisioning._core import Command
from windows_access import Reference
from windows_access import WindowsAccess


def _as_list(value) -> Sequence[str]:
    # Arrays of one element come as a single value.
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def find_connection(
        adapters: Collection[Mapping[str, Any]],
        configurations: Collection[Tuple[Reference, Mapping[str, Any]]],
        address: str,
        ) -> Tuple[str, Reference, Sequence[str]]:
    """Find the only enabled connection which has the address.

    Return the connection name, the configuration reference
    and the current DNS servers.
    """
    by_index = {c['Index']: (ref, c) for ref, c in configurations}
    found = []
    for adapter in adapters:
        if adapter.get('NetEnabled') != 'true':
            continue
        if adapter['Index'] not in by_index:
            continue
        ref, configuration = by_index[adapter['Index']]
        if address in _as_list(configuration.get('IPAddress')):
            found.append((
                adapter['NetConnectionID'],
                ref,
                _as_list(configuration.get('DNSServerSearchOrder')),
                ))
    if len(found) != 1:
        raise NetworkConnectionNotFound(
            f"Exactly one network connection must have address {address}; "
            f"found: {[name for name, _, _ in found]}")
    return found[0]


class DnsClient(Command):
    """DNS servers of the connection that has the host address."""

    def __init__(self, host_address: str, dns_servers: Sequence[str] = ('127.0.0.1',)):
        self._host_address = host_address
        self._dns_servers = list(dns_servers)

    def __repr__(self):
        return f'{DnsClient.__name__}({self._host_address!r}, {self._dns_servers!r})'

    def run(self, host: WindowsAccess):
        winrm = host.winrm
        adapters = [a for _, a in winrm.wsman_all('Win32_NetworkAdapter')]
        configurations = list(winrm.wsman_all('Win32_NetworkAdapterConfiguration'))
        name, ref, current = find_connection(adapters, configurations, self._host_address)
        _logger.info("%s: connection %r: DNS servers %r", host, name, current)
        if list(current) == self._dns_servers:
            return False
        winrm.wsman_invoke(
            ref.uri, ref.selectors,
            'SetDNSServerSearchOrder', {'DNSServerSearchOrder': self._dns_servers})
        _logger.info("%s: connection %r: DNS servers set to %r", host, name, self._dns_servers)
        return True


class NetworkConnectionNotFound(Exception):
    pass


_logger = logging.getLogger(__name__)
