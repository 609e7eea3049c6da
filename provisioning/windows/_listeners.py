# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""HTTPS WinRM listeners, one per loopback adapter.

WinRM cannot listen on several ports of the same address,
hence each listener is bound to an address of its own loopback adapter.
WinRM also checks that a request came to the address it listens on.
The external port is forwarded to the listener, so WinRM sees requests
as if they came to the loopback address.

Deciding what to do is separated from doing it:
plan_listener() is a pure function, ListenerStore carries out the actions.
"""
import logging
import time
from abc import ABCMeta
from abc import abstractmethod
from pathlib import Path
from typing import Collection
from typing import List
from typing import NamedTuple
from typing import Optional
from typing import Sequence
from typing import Tuple
from typing import Union

from provisioning._core import Command
from provisioning.windows._certificates import pfx_path
from provisioning.windows._certificates import thumbprint
from provisioning.windows._endpoints import Endpoint
from provisioning.windows._endpoints import EndpointTable
from windows_access import WindowsAccess


class Listener(NamedTuple):
    address: str  # As WinRM has it: "IP:<address>".
    port: int
    thumbprint: str


class PortForward(NamedTuple):
    listen_address: str
    listen_port: int
    connect_address: str
    connect_port: int


class CreateListener(NamedTuple):
    listener: Listener


class DeleteListener(NamedTuple):
    listener: Listener


ListenerAction = Union[CreateListener, DeleteListener]


def plan_listener(
        desired: Listener,
        observed: Optional[Listener],
        ) -> Tuple[Sequence[ListenerAction], bool]:
    """Actions to bring the listener on the port to the desired state.

    >>> desired = Listener('IP:169.254.1.1', 29903, 'AB12')
    >>> plan_listener(desired, None)
    ([CreateListener(listener=Listener(address='IP:169.254.1.1', port=29903, thumbprint='AB12'))], True)
    >>> plan_listener(desired, desired)
    ([], False)
    >>> stale = Listener('IP:169.254.1.1', 29903, 'CD34')
    >>> [type(a).__name__ for a in plan_listener(desired, stale)[0]]
    ['DeleteListener', 'CreateListener']
    """
    if observed is None:
        return [CreateListener(desired)], True
    if observed.address != desired.address or observed.thumbprint != desired.thumbprint:
        return [DeleteListener(observed), CreateListener(desired)], True
    return [], False


def plan_port_forward(
        desired: PortForward,
        observed: Collection[PortForward],
        listener_recreated: bool,
        ) -> bool:
    """Whether the forwarding rule must be (re)installed.

    A rule is keyed by its listen address and port,
    the connect side may drift from the listener.

    >>> rule = PortForward('192.168.56.10', 29902, '169.254.1.1', 29903)
    >>> plan_port_forward(rule, [rule], listener_recreated=False)
    False
    >>> plan_port_forward(rule, [rule], listener_recreated=True)
    True
    >>> plan_port_forward(rule, [], listener_recreated=False)
    True
    >>> plan_port_forward(rule, [rule._replace(connect_address='169.254.9.9')], listener_recreated=False)
    True
    """
    if listener_recreated:
        return True
    return desired not in observed


class ListenerStore(metaclass=ABCMeta):
    """Where certificates, adapters, listeners and forwarding rules live."""

    @abstractmethod
    def get_friendly_name(self, thumbprint: str) -> str:
        pass

    @abstractmethod
    def set_friendly_name(self, thumbprint: str, name: str):
        pass

    @abstractmethod
    def adapter_ipv4_address(self, adapter_name: str) -> Optional[str]:
        """Address or None if not assigned yet."""
        pass

    @abstractmethod
    def list_https_listeners(self) -> Sequence[Listener]:
        pass

    @abstractmethod
    def delete_listener(self, listener: Listener):
        pass

    @abstractmethod
    def create_listener(self, listener: Listener):
        pass

    @abstractmethod
    def list_port_forwards(self) -> Sequence[PortForward]:
        pass

    @abstractmethod
    def add_port_forward(self, rule: PortForward):
        pass


class ListenerReconciler:

    def __init__(
            self,
            store: ListenerStore,
            external_address: str,
            address_timeout_sec: float = 300,
            poll_interval_sec: float = 1,
            ):
        self._store = store
        self._external_address = external_address
        self._address_timeout_sec = address_timeout_sec
        self._poll_interval_sec = poll_interval_sec

    def reconcile(self, endpoint: Endpoint, cert_thumbprint: str) -> bool:
        changed = False
        current_name = self._store.get_friendly_name(cert_thumbprint)
        if current_name != endpoint.friendly_name:
            _logger.info(
                "%s: certificate %s: rename %r to %r",
                endpoint.test_name, cert_thumbprint, current_name, endpoint.friendly_name)
            self._store.set_friendly_name(cert_thumbprint, endpoint.friendly_name)
            changed = True
        address = self._wait_for_address(endpoint.adapter_name)
        desired = Listener(f'IP:{address}', endpoint.listener_port, cert_thumbprint)
        observed = self._observed_listener(endpoint.listener_port)
        actions, listener_changed = plan_listener(desired, observed)
        for action in actions:
            _logger.info("%s: %r", endpoint.test_name, action)
            if isinstance(action, DeleteListener):
                self._store.delete_listener(action.listener)
            else:
                self._store.create_listener(action.listener)
        rule = PortForward(self._external_address, endpoint.external_port, address, endpoint.listener_port)
        if plan_port_forward(rule, self._store.list_port_forwards(), listener_changed):
            _logger.info("%s: forward %r", endpoint.test_name, rule)
            self._store.add_port_forward(rule)
            changed = True
        return changed or listener_changed

    def _observed_listener(self, port: int) -> Optional[Listener]:
        on_port = [listener for listener in self._store.list_https_listeners() if listener.port == port]
        if len(on_port) > 1:
            raise AmbiguousListener(f"Multiple HTTPS listeners on port {port}: {on_port}")
        return on_port[0] if on_port else None

    def _wait_for_address(self, adapter_name: str) -> str:
        # Address is assigned some time after the adapter is created.
        started_at = time.monotonic()
        while True:
            address = self._store.adapter_ipv4_address(adapter_name)
            if address:
                return address
            if time.monotonic() - started_at >= self._address_timeout_sec:
                raise AdapterAddressTimeout(
                    f"{adapter_name}: no IPv4 address in {self._address_timeout_sec} seconds")
            _logger.debug("%s: no IPv4 address yet", adapter_name)
            time.sleep(self._poll_interval_sec)


class AdapterAddressTimeout(Exception):
    pass


class AmbiguousListener(Exception):
    pass


class WinRMListenerStore(ListenerStore):

    def __init__(self, windows: WindowsAccess):
        self._windows = windows

    def get_friendly_name(self, thumbprint):
        # language=PowerShell
        script = '(Get-Item -LiteralPath "Cert:\\LocalMachine\\My\\$Thumbprint").FriendlyName'
        [name] = self._windows.run_powershell(script, {'Thumbprint': thumbprint})
        return name or ''

    def set_friendly_name(self, thumbprint, name):
        # language=PowerShell
        script = '''
            $cert = Get-Item -LiteralPath "Cert:\\LocalMachine\\My\\$Thumbprint"
            $cert.FriendlyName = $Name
            '''
        self._windows.run_powershell(script, {'Thumbprint': thumbprint, 'Name': name})

    def adapter_ipv4_address(self, adapter_name):
        # language=PowerShell
        script = '''
            Get-NetAdapter -InterfaceDescription $Name |
                Get-NetIPAddress -AddressFamily IPv4 -ErrorAction SilentlyContinue |
                ForEach-Object { $_.IPAddress }
            '''
        addresses = self._windows.run_powershell(script, {'Name': adapter_name})
        return addresses[0] if addresses else None

    def list_https_listeners(self):
        # language=PowerShell
        script = '''
            Get-ChildItem -Path WSMan:\\localhost\\Listener |
                Where-Object { $_.Keys -contains "Transport=HTTPS" } |
                ForEach-Object {
                    $details = Get-ChildItem -Path $_.PSPath
                    @{
                        Address = ($details | Where-Object Name -eq Address).Value
                        Port = ($details | Where-Object Name -eq Port).Value
                        CertificateThumbprint = ($details | Where-Object Name -eq CertificateThumbprint).Value
                    }
                }
            '''
        return [
            Listener(raw['Address'], int(raw['Port']), (raw['CertificateThumbprint'] or '').upper())
            for raw in self._windows.run_powershell(script, {})
            ]

    def delete_listener(self, listener):
        # language=PowerShell
        script = '''
            Remove-WSManInstance -ResourceURI winrm/config/Listener -SelectorSet @{
                Address = $Address
                Transport = 'HTTPS'
            }
            '''
        self._windows.run_powershell(script, {'Address': listener.address})

    def create_listener(self, listener):
        # language=PowerShell
        script = '''
            $null = New-WSManInstance `
                -ResourceURI winrm/config/Listener `
                -SelectorSet @{Address = $Address; Transport = 'HTTPS'} `
                -ValueSet @{CertificateThumbprint = $Thumbprint; Port = $Port}
            '''
        self._windows.run_powershell(script, {
            'Address': listener.address,
            'Thumbprint': listener.thumbprint,
            'Port': listener.port,
            })

    def list_port_forwards(self):
        # Same table as "netsh interface portproxy show v4tov4", easier to parse.
        # language=PowerShell
        script = '''
            $key = 'HKLM:\\SYSTEM\\CurrentControlSet\\Services\\PortProxy\\v4tov4\\tcp'
            if (Test-Path -LiteralPath $key) {
                $item = Get-Item -LiteralPath $key
                foreach ($name in $item.GetValueNames()) {
                    @{Listen = $name; Connect = $item.GetValue($name)}
                }
            }
            '''
        return [
            _parse_port_forward(raw['Listen'], raw['Connect'])
            for raw in self._windows.run_powershell(script, {})
            ]

    def add_port_forward(self, rule):
        self._windows.run([
            'netsh', 'interface', 'portproxy', 'add', 'v4tov4',
            f'listenaddress={rule.listen_address}',
            f'listenport={rule.listen_port}',
            f'connectaddress={rule.connect_address}',
            f'connectport={rule.connect_port}',
            ])


def _parse_port_forward(listen: str, connect: str) -> PortForward:
    """Parse a registry value of the port proxy.

    >>> _parse_port_forward('192.168.56.10/29902', '169.254.1.1/29903')
    PortForward(listen_address='192.168.56.10', listen_port=29902, connect_address='169.254.1.1', connect_port=29903)
    """
    listen_address, listen_port = listen.rsplit('/', 1)
    connect_address, connect_port = connect.rsplit('/', 1)
    return PortForward(listen_address, int(listen_port), connect_address, int(connect_port))


class ReconcileListeners(Command):
    """A listener per endpoint, in order."""

    def __init__(
            self,
            table: EndpointTable,
            cert_dir: Path,
            external_address: str,
            address_timeout_sec: float = 300,
            ):
        self._table = table
        self._cert_dir = cert_dir
        self._external_address = external_address
        self._address_timeout_sec = address_timeout_sec

    def __repr__(self):
        return f'{ReconcileListeners.__name__}({self._table!r}, {self._external_address!r})'

    def run(self, host: WindowsAccess):
        reconciler = ListenerReconciler(
            WinRMListenerStore(host),
            self._external_address,
            address_timeout_sec=self._address_timeout_sec,
            )
        changed: List[str] = []
        for endpoint in self._table:
            cert_thumbprint = thumbprint(pfx_path(self._cert_dir, endpoint))
            if reconciler.reconcile(endpoint, cert_thumbprint):
                changed.append(endpoint.test_name)
        _logger.info("%s: listeners changed: %s", host, changed or 'none')
        return bool(changed)


_logger = logging.getLogger(__name__)
