# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""HTTPS WinRM endpoints, one per test certificate.

Everything about an endpoint is derived from its position in the list:

>>> table = EndpointTable([EndpointSpec('cbt-sha1'), EndpointSpec('cbt-sha256')], 29900)
>>> endpoint = table['cbt-sha256']
>>> endpoint.external_port, endpoint.listener_port
(29902, 29903)
>>> endpoint.friendly_name
'test_cbt-sha256_29902'
>>> endpoint.adapter_name
'Microsoft KM-TEST Loopback Adapter #2'
>>> table['cbt-sha1'].adapter_name
'Microsoft KM-TEST Loopback Adapter'
"""
import logging
from enum import Enum
from typing import Iterator
from typing import NamedTuple
from typing import Optional
from typing import Sequence

LOOPBACK_ADAPTER_DESCRIPTION = 'Microsoft KM-TEST Loopback Adapter'


class KeyAlgorithm(Enum):
    SHA1 = 'sha1'
    SHA256 = 'sha256'
    SHA256_PSS = 'sha256-pss'
    SHA384 = 'sha384'
    SHA512 = 'sha512'
    SHA512_PSS = 'sha512-pss'
    DEFAULT = 'default'

    def hash_name(self) -> str:
        if self is KeyAlgorithm.DEFAULT:
            return 'sha256'
        return self.value.split('-')[0]

    def is_pss(self) -> bool:
        return self.value.endswith('-pss')


class EndpointSpec(NamedTuple):
    test_name: str
    key_algorithm: KeyAlgorithm = KeyAlgorithm.DEFAULT
    subject: Optional[str] = None
    self_signed: bool = False
    system_ca: bool = True


class Endpoint(NamedTuple):
    spec: EndpointSpec
    index: int
    external_port: int
    listener_port: int

    @property
    def test_name(self):
        return self.spec.test_name

    @property
    def friendly_name(self):
        return f'test_{self.spec.test_name}_{self.external_port}'

    @property
    def adapter_name(self):
        if self.index == 0:
            return LOOPBACK_ADAPTER_DESCRIPTION
        return f'{LOOPBACK_ADAPTER_DESCRIPTION} #{self.index + 1}'

    @property
    def firewall_rule_name(self):
        # The parenthesis is left open, the tests refer to the rules this way.
        return f'WinRM HTTPS ({self.spec.test_name}'

    def subject(self, host_fqdn: str) -> str:
        return self.spec.subject or host_fqdn


class EndpointTable:

    def __init__(self, specs: Sequence[EndpointSpec], base_port: int):
        self.base_port = base_port
        self._endpoints = [
            Endpoint(spec, index, base_port + 2 * index, base_port + 2 * index + 1)
            for index, spec in enumerate(specs)
            ]
        _validate(self._endpoints)

    def __repr__(self):
        return f'<{EndpointTable.__name__} {len(self._endpoints)} from port {self.base_port}>'

    def __iter__(self) -> Iterator[Endpoint]:
        return iter(self._endpoints)

    def __len__(self):
        return len(self._endpoints)

    def __getitem__(self, test_name: str) -> Endpoint:
        for endpoint in self._endpoints:
            if endpoint.test_name == test_name:
                return endpoint
        raise KeyError(test_name)

    def describe(self) -> str:
        lines = []
        for e in self._endpoints:
            lines.append(
                f'{e.index:>2} {e.test_name:<24} {e.external_port:>5} -> {e.listener_port:<5} '
                f'{e.friendly_name:<32} {e.adapter_name}')
        return '\n'.join(lines)


def _validate(endpoints: Sequence[Endpoint]):
    seen_names = set()
    seen_ports = set()
    seen_adapters = set()
    for e in endpoints:
        if not e.test_name:
            raise EndpointTableError(f"Endpoint #{e.index} has empty test name")
        if e.test_name in seen_names:
            raise EndpointTableError(f"Duplicate test name {e.test_name!r}")
        seen_names.add(e.test_name)
        for port in e.external_port, e.listener_port:
            if not 1 <= port <= 65535:
                raise EndpointTableError(f"{e.test_name}: port {port} is out of range")
            if port in seen_ports:
                raise EndpointTableError(f"{e.test_name}: port {port} is used twice")
            seen_ports.add(port)
        if e.adapter_name in seen_adapters:
            raise EndpointTableError(f"{e.test_name}: adapter {e.adapter_name!r} is used twice")
        seen_adapters.add(e.adapter_name)


class EndpointTableError(ValueError):
    pass


_logger = logging.getLogger(__name__)
