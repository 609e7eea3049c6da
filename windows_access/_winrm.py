# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from __future__ import annotations

import base64
import logging
import pprint
import socket
import threading
from contextlib import closing
from http.client import HTTPConnection
from typing import Any
from typing import Iterator
from typing import Mapping
from typing import NoReturn
from typing import Optional
from typing import Tuple
from uuid import uuid4
from xml.etree.ElementTree import Element
from xml.etree.ElementTree import ParseError
from xml.etree.ElementTree import XML
from xml.etree.ElementTree import tostring

import xmltodict

from windows_access._wsman_xml import OptionSet
from windows_access._wsman_xml import Reference
from windows_access._wsman_xml import aliases
from windows_access._wsman_xml import class_namespace_and_tag
from windows_access._wsman_xml import endpoint_reference
from windows_access._wsman_xml import from_xml_value
from windows_access._wsman_xml import namespace_aliases
from windows_access._wsman_xml import object_properties
from windows_access._wsman_xml import parse_reference
from windows_access._wsman_xml import resolve_resource_uri
from windows_access._wsman_xml import selector_set
from windows_access._wsman_xml import to_xml_value

_logger = logging.getLogger(__name__)

# See: https://docs.microsoft.com/en-us/windows/desktop/WmiSdk/wmi-error-constants
_win32_error_codes = {
    0x80071392: 'ERROR_OBJECT_ALREADY_EXISTS',
    0x80041005: 'WBEM_E_TYPE_MISMATCH',
    0x80041008: 'WBEM_E_INVALID_PARAMETER',
    }


class WinRMOperationTimeoutError(Exception):
    """WS-Management operation timed out on the server side.

    Expected while waiting for output of a long-running command.
    The client should simply repeat the request.
    """


class WinRmHttpResponseTimeout(Exception):
    pass


class WinRmUnauthorized(Exception):
    pass


class WmiInvokeFailed(Exception):

    def __init__(self, cls, selectors, method, params, return_value: int, method_output):
        if return_value & 0x80000000:
            text = _win32_error_codes.get(return_value, 'unknown')
            formatted = f'0x{return_value:X} ({text})'
        else:
            formatted = str(return_value)
        super().__init__(
            f"Non-zero return value {formatted} of {cls}.{method}({params!r}) "
            f"where {selectors!r}:\n{pprint.pformat(method_output)}")
        self.return_value = return_value


# See: https://docs.microsoft.com/en-us/previous-versions/windows/desktop/ramgmtpsprov/msft-wmierror
class WmiError(Exception):
    INVALID_PARAMETER = 4
    NOT_FOUND = 6
    ALREADY_EXISTS = 11

    def __init__(self, code: int, message: str):
        super().__init__(f'Error code {code}: {message}')
        self.code = code
        self.message = message


class WmiObjectNotFound(Exception):

    def __init__(self, operation: str, parameter_info: str, provider_name: str):
        super().__init__(f"{operation} {parameter_info} ({provider_name}): not found")
        self.operation = operation
        self.parameter_info = parameter_info
        self.provider_name = provider_name


class WmiFault(Exception):
    pass


class SoapFault(Exception):

    def __init__(self, message: str, code_ns: str, code_value: str):
        super().__init__(message)
        self.code_ns = code_ns
        self.code_value = code_value


def raise_for_fault(content: bytes) -> NoReturn:
    """Turn a SOAP fault from an HTTP 500 response into an exception."""
    if not content:
        raise RuntimeError(
            "Error 500 with empty body; "
            "may be caused by the disabling of unencrypted traffic; "
            "check: `winrm g winrm/config/service`")
    try:
        root: Element = XML(content)
    except ParseError:
        raise RuntimeError(f"Can't decode WinRM message:\n{content!r}")
    fault = root.find('env:Body/env:Fault', aliases)
    if fault is None:
        raise RuntimeError(f"WinRM error:\n{tostring(root)!r}")
    wsman_fault = fault.find('env:Detail/fault:WSManFault[@Code]', aliases)
    if wsman_fault is not None:
        code = int(wsman_fault.get('Code'))
        if code == 0x80338029:
            raise WinRMOperationTimeoutError()
        if code == 0x80338000:
            status = fault.find(
                'env:Detail/fault:WSManFault/fault:Message'
                '/fault:ProviderFault/fault:ExtendedError/extended_status:__ExtendedStatus',
                aliases)
            if status is not None:
                raise WmiObjectNotFound(
                    status.findtext('extended_status:Operation', '', aliases),
                    status.findtext('extended_status:ParameterInfo', '', aliases),
                    status.findtext('extended_status:ProviderName', '', aliases),
                    )
    provider_message = fault.find(
        'env:Detail/fault:WSManFault/fault:Message/fault:ProviderFault/fault:WSManFault/fault:Message',
        aliases)
    if provider_message is not None:
        raise WmiFault(provider_message.text)
    for ns in ('cim_error', 'network_cim_error'):
        cim_error = fault.find(f'env:Detail/{ns}:MSFT_WmiError', aliases)
        if cim_error is not None:
            code = int(cim_error.findtext(f'{ns}:CIMStatusCode', '0', aliases))
            message = cim_error.findtext(f'{ns}:Message', '', aliases)
            raise WmiError(code, message)
    message = ''.join(fault.find('env:Reason/env:Text', aliases).itertext())
    code_full = ''.join(fault.find('env:Code/env:Subcode', aliases).itertext())
    code_ns_alias, code_value = code_full.split(':', 1)
    raise SoapFault(message, aliases.get(code_ns_alias, code_ns_alias), code_value)


class WinRM:
    """Generic WS-Management client.

    Knows nothing of particular WMI classes, CMD or PowerShell.
    """

    def __init__(self, address: str, port: int, username: str, password: str):
        self._address = address
        self._port = port
        self._auth = b'Basic ' + base64.b64encode(f'{username}:{password}'.encode())
        self._repr = f'WinRM({address!r}, {port!r}, {username!r}, password)'
        self._lock = threading.Lock()

    def __repr__(self):
        return self._repr

    def netloc(self):
        return f'{self._address}:{self._port}'

    def _post(self, data: bytes) -> Tuple[int, bytes]:
        # Windows drops idle connections after 120 seconds, so connect per request.
        with closing(HTTPConnection(self._address, self._port, timeout=150)) as connection:
            try:
                connection.request('POST', '/wsman', body=data, headers={
                    'Content-Type': 'application/soap+xml;charset=UTF-8',
                    'Authorization': self._auth,
                    })
            except socket.gaierror as e:
                raise RuntimeError(f"Cannot resolve {self._address}: {e}")
            try:
                response = connection.getresponse()
            except TimeoutError:
                raise WinRmHttpResponseTimeout()
            return response.status, response.read()

    def act(
            self,
            class_uri: str,
            action: str,
            body: Mapping[str, Any],
            selectors: Optional[Mapping[str, Any]] = None,
            options: Optional[OptionSet] = None,
            timeout_sec: Optional[float] = None,
            ) -> Mapping[str, Any]:
        message_id = 'uuid:' + str(uuid4())
        header = {
            'a:To': 'http://windows-host:5985/wsman',  # Any hostname is accepted.
            'a:ReplyTo': {
                'a:Address': 'http://schemas.xmlsoap.org/ws/2004/08/addressing/role/anonymous',
                },
            'a:MessageID': message_id,
            'w:ResourceURI': {'@env:mustUnderstand': 'true', '#text': class_uri},
            'a:Action': {'@env:mustUnderstand': 'true', '#text': action},
            'w:MaxEnvelopeSize': {'@env:mustUnderstand': 'true', '#text': str(8 * 1024 * 1024)},
            'w:OperationTimeout': 'PT{:06.3f}S'.format(timeout_sec or 120),
            # Locales are not guaranteed by WinRM, hence mustUnderstand="false".
            'w:Locale': {'@env:mustUnderstand': 'false', '@xml:lang': 'en-US'},
            'p:DataLocale': {'@env:mustUnderstand': 'false', '@xml:lang': 'en-US'},
            }
        if options is not None and options.as_dict:
            header['w:OptionSet'] = options.raw()
        if selectors:
            header['w:SelectorSet'] = selector_set(selectors)
        envelope = {
            'env:Envelope': {
                **{'@xmlns:' + alias: uri for uri, alias in namespace_aliases.items()},
                'env:Header': header,
                'env:Body': body,
                },
            }
        request = xmltodict.unparse(envelope, pretty=True, indent='  ')
        _logger.debug("%s: request:\n%s", self, request)
        with self._lock:
            status, content = self._post(request.encode('utf-8'))
        _logger.debug("%s: response %d:\n%s", self, status, content.decode(errors='backslashreplace'))
        if status == 401:
            raise WinRmUnauthorized(f"{self}: unauthorized")
        if status == 500:
            raise_for_fault(content)
        if status != 200:
            raise RuntimeError(f"{self}: unexpected status {status}")
        response = xmltodict.parse(
            content,
            process_namespaces=True,
            namespaces=namespace_aliases,
            force_list=['w:Item', 'w:Selector', 'rsp:Stream'],
            )
        relates_to = response['env:Envelope']['env:Header']['a:RelatesTo']
        if relates_to != message_id:
            raise RuntimeError(f"Unexpected RelatesTo {relates_to} for MessageID {message_id}")
        return response['env:Envelope']['env:Body'] or {}

    def enumerate(self, uri: str, raw_filter) -> Iterator[Tuple[Reference, Mapping[str, Any]]]:
        _logger.info("%s: enumerate %s with %r", self, uri, raw_filter)
        response = self.act(
            uri, 'http://schemas.xmlsoap.org/ws/2004/09/enumeration/Enumerate', {
                'n:Enumerate': {
                    'w:OptimizeEnumeration': None,
                    'w:MaxElements': '32000',
                    # Both data and references are needed to act on returned objects.
                    'w:EnumerationMode': 'EnumerateObjectAndEPR',
                    **raw_filter,
                    },
                })
        started = response['n:EnumerateResponse']
        yield from _objects(started.get('w:Items'))
        ended = 'w:EndOfSequence' in started
        context = started.get('n:EnumerationContext')
        while not ended:
            response = self.act(
                uri, 'http://schemas.xmlsoap.org/ws/2004/09/enumeration/Pull', {
                    'n:Pull': {
                        'n:EnumerationContext': context,
                        'n:MaxElements': '32000',
                        },
                    })
            pulled = response['n:PullResponse']
            yield from _objects(pulled.get('n:Items'))
            ended = 'n:EndOfSequence' in pulled
            context = pulled.get('n:EnumerationContext')

    def wsman_all(self, cls: str):
        return self.enumerate(resolve_resource_uri(cls), {})

    def wsman_select(self, cls: str, selectors: Mapping[str, Any]):
        return self.enumerate(resolve_resource_uri(cls), {
            'w:Filter': {
                '@Dialect': 'http://schemas.dmtf.org/wbem/wsman/1/wsman/SelectorFilter',
                'w:SelectorSet': selector_set(selectors),
                },
            })

    def wsman_associated(self, cls: str, selectors, association_cls_name, result_cls_name):
        uri = resolve_resource_uri(cls)
        return self.enumerate(uri.rsplit('/', 1)[0] + '/*', {
            'w:Filter': {
                '@Dialect': 'http://schemas.dmtf.org/wbem/wsman/1/cimbinding/associationFilter',
                'b:AssociatedInstances': {
                    'b:Object': endpoint_reference(uri, selectors),
                    'b:AssociationClassName': association_cls_name,
                    'b:ResultClassName': result_cls_name,
                    },
                },
            })

    def wsman_get(self, cls: str, selectors: Mapping[str, Any]) -> Mapping[str, Any]:
        _logger.info("%s: get %s where %r", self, cls, selectors)
        uri = resolve_resource_uri(cls)
        outcome = self.act(uri, 'http://schemas.xmlsoap.org/ws/2004/09/transfer/Get', {}, selectors)
        return _single_object(uri, outcome)

    def wsman_put(self, cls: str, selectors, properties: Mapping[str, Any]):
        _logger.info("%s: put %s where %r: %r", self, cls, selectors, properties)
        uri = resolve_resource_uri(cls)
        name = uri.rsplit('/', 1)[1]
        body = {name: {'@xmlns': uri, **to_xml_value(dict(properties))}}
        outcome = self.act(uri, 'http://schemas.xmlsoap.org/ws/2004/09/transfer/Put', body, selectors)
        return _single_object(uri, outcome)

    def wsman_create(self, cls: str, properties: Mapping[str, Any]) -> Reference:
        _logger.info("%s: create %s: %r", self, cls, properties)
        uri = resolve_resource_uri(cls)
        name = uri.rsplit('/', 1)[1]
        body = {name: {'@xmlns': uri, **to_xml_value(dict(properties))}}
        outcome = self.act(uri, 'http://schemas.xmlsoap.org/ws/2004/09/transfer/Create', body)
        ref = parse_reference(outcome['t:ResourceCreated'])
        if ref.uri.lower() != uri.lower():
            raise RuntimeError(f"Created {ref.uri} instead of {uri}")
        return ref

    def wsman_invoke(
            self,
            cls: str,
            selectors: Mapping[str, Any],
            method_name: str,
            params: Mapping[str, Any],
            timeout_sec: Optional[float] = None,
            ) -> Optional[Mapping[str, Any]]:
        """Invoke a method of a WMI object.

        Pass empty `params` explicitly if the method takes none.
        """
        _logger.info("%s: invoke %s.%s(%r) where %r", self, cls, method_name, params, selectors)
        uri = resolve_resource_uri(cls)
        method_input = {'p:' + k: v for k, v in to_xml_value(dict(params)).items()}
        method_input['@xmlns:p'] = uri
        method_input['@xmlns:xsi'] = 'http://www.w3.org/2001/XMLSchema-instance'
        body = {method_name + '_INPUT': method_input}
        response = self.act(uri, uri + '/' + method_name, body, selectors, timeout_sec=timeout_sec)
        [namespace, _tag] = class_namespace_and_tag(uri)
        output_raw = response[namespace + ':' + method_name + '_OUTPUT']
        if output_raw is None:
            # Some methods, e.g. MSFT_NetFirewallRule.Disable, return nothing at all.
            return None
        output = from_xml_value(output_raw)
        return_value = output[namespace + ':ReturnValue']
        if return_value not in ('0', None):
            raise WmiInvokeFailed(cls, selectors, method_name, params, int(return_value), output)
        return output


def _objects(items_element):
    # Enumerate response may come without items.
    # See: https://docs.microsoft.com/en-us/openspecs/windows_protocols/ms-wsmv/b79bcdd9-125c-49e0-8a4f-bac4ce878592  # noqa
    if not items_element:
        return []
    result = []
    for item in items_element['w:Item']:
        ref = parse_reference(item['a:EndpointReference'])
        # Base class enumeration returns subclasses; take the tag from the reference.
        [namespace, tag] = class_namespace_and_tag(ref.uri)
        result.append((ref, object_properties(namespace, item[tag])))
    return result


def _single_object(uri, outcome):
    [namespace, tag] = class_namespace_and_tag(uri)
    for key, data in outcome.items():
        if key.lower() == tag.lower():
            return object_properties(namespace, data)
    raise KeyError(f"Cannot find {tag} in {outcome}")
