# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging

from provisioning._core import Command
from provisioning.windows._endpoints import EndpointTable
from windows_access import WindowsAccess
from windows_access import WmiError

_rule_cls = 'wmi/Root/StandardCimV2/MSFT_NetFirewallRule'


class AllowInboundTcp(Command):
    """Firewall rule identified by its name.

    See on numeric constants: https://msdn.microsoft.com/en-us/library/jj676843(v=vs.85).aspx
    """

    def __init__(self, name: str, port: int):
        self._name = name
        self._port = port

    def __repr__(self):
        return f'{AllowInboundTcp.__name__}({self._name!r}, {self._port!r})'

    def run(self, host: WindowsAccess):
        winrm = host.winrm
        rules = list(winrm.wsman_select(_rule_cls, {'InstanceID': self._name}))
        changed = False
        if rules:
            [[rule_ref, _]] = rules
            _logger.debug("%s: firewall rule %r exists", host, self._name)
        else:
            properties = {
                'InstanceID': self._name,
                'ElementName': self._name,
                'Direction': 1,  # Inbound.
                'Action': 2,  # Allow.
                'Enabled': 1,  # True.
                'Profiles': 1 | 2 | 4,  # Domain, private, public.
                }
            try:
                rule_ref = winrm.wsman_create(_rule_cls, properties)
            except WmiError as e:
                if e.code != WmiError.ALREADY_EXISTS:
                    raise
                [[rule_ref, _]] = winrm.wsman_select(_rule_cls, {'InstanceID': self._name})
            _logger.info("%s: firewall rule %r created", host, self._name)
            changed = True
        [[port_filter_ref, port_filter]] = winrm.wsman_associated(
            _rule_cls, rule_ref.selectors,
            'MSFT_NetFirewallRuleFilterByProtocolPort',
            'MSFT_NetProtocolPortFilter')
        local_port = port_filter.get('LocalPort')
        if isinstance(local_port, list):
            local_port = ','.join(local_port)
        if (port_filter.get('Protocol') or '').upper() != 'TCP' or local_port != str(self._port):
            winrm.wsman_put(*port_filter_ref, {'Protocol': 'TCP', 'LocalPort': str(self._port)})
            _logger.info("%s: firewall rule %r: port %d/tcp", host, self._name, self._port)
            changed = True
        return changed


def firewall_rules(table: EndpointTable):
    return [AllowInboundTcp(e.firewall_rule_name, e.external_port) for e in table]


_logger = logging.getLogger(__name__)
