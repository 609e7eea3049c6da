# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""XML vocabulary of WS-Management as seen through xmltodict.

Requests and responses are dicts produced and consumed by xmltodict.
Namespaces are forced to fixed aliases, so the code may refer to tags
like 'w:Selector' regardless of prefixes chosen by the other side.
"""
from __future__ import annotations

import logging
from typing import Mapping
from typing import NamedTuple
from typing import Optional
from typing import Union

_logger = logging.getLogger(__name__)

namespace_aliases = {
    # Namespace URIs are fixed, aliases are arbitrary.
    # Aliases mostly follow WMI documentation examples.
    'http://www.w3.org/XML/1998/namespace': 'xml',
    'http://www.w3.org/2003/05/soap-envelope': 'env',
    'http://schemas.xmlsoap.org/ws/2004/09/enumeration': 'n',
    'http://www.w3.org/2001/XMLSchema-instance': 'xsi',
    'http://www.w3.org/2001/XMLSchema': 'xs',
    'http://schemas.dmtf.org/wbem/wscim/1/common': 'cim',
    'http://schemas.dmtf.org/wbem/wsman/1/wsman.xsd': 'w',
    'http://schemas.dmtf.org/wbem/wsman/1/cimbinding.xsd': 'b',
    'http://schemas.xmlsoap.org/ws/2004/09/transfer': 't',
    'http://schemas.xmlsoap.org/ws/2004/08/addressing': 'a',
    'http://schemas.microsoft.com/wbem/wsman/1/wsman.xsd': 'p',
    'http://schemas.microsoft.com/wbem/wsman/1/windows/shell': 'rsp',
    'http://schemas.microsoft.com/wbem/wsman/1/config': 'cfg',
    'http://schemas.microsoft.com/wbem/wsman/1/wsmanfault': 'fault',
    'http://schemas.dmtf.org/wbem/wscim/1/cim-schema/2/MSFT_WmiError': 'cim_error',
    'http://schemas.microsoft.com/wbem/wsman/1/wmi/root/cimv2/__ExtendedStatus': 'extended_status',
    'http://schemas.microsoft.com/wbem/wsman/1/wmi/root/standardcimv2/MSFT_WmiError': 'network_cim_error',
    }
aliases = {a: n for n, a in namespace_aliases.items()}

# See `winrm help aliases`.
_resource_aliases = {
    'wmi': 'http://schemas.microsoft.com/wbem/wsman/1/wmi',
    'wmicimv2': 'http://schemas.microsoft.com/wbem/wsman/1/wmi/root/cimv2',
    'winrm': 'http://schemas.microsoft.com/wbem/wsman/1',
    'shell': 'http://schemas.microsoft.com/wbem/wsman/1/windows/shell',
    }


def resolve_resource_uri(short_uri: str) -> str:
    """Expand an alias or guess the namespace of a class.

    >>> resolve_resource_uri('Win32_NetworkAdapter')
    'http://schemas.microsoft.com/wbem/wsman/1/wmi/root/cimv2/Win32_NetworkAdapter'
    >>> resolve_resource_uri('wmi/Root/StandardCimV2/MSFT_NetFirewallRule')
    'http://schemas.microsoft.com/wbem/wsman/1/wmi/Root/StandardCimV2/MSFT_NetFirewallRule'
    >>> resolve_resource_uri('MSFT_NetAdapter')  # doctest: +IGNORE_EXCEPTION_DETAIL
    Traceback (most recent call last):
    ...
    ValueError: Cannot guess namespace of MSFT_NetAdapter
    """
    if '//' in short_uri:
        return short_uri
    if '/' in short_uri:
        alias, rest = short_uri.split('/', 1)
        return _resource_aliases[alias] + '/' + rest
    if short_uri.startswith('Win32_'):
        return _resource_aliases['wmicimv2'] + '/' + short_uri
    raise ValueError(
        f"Cannot guess namespace of {short_uri}; "
        f"only Win32_ classes live in one well-known namespace")


def class_namespace_and_tag(uri: str):
    [directory, name] = uri.rsplit('/', 1)
    # Responses use lower-case directories; the letter case of the class name is kept.
    uri = directory.lower() + '/' + name
    namespace = namespace_aliases.get(uri, uri)
    return namespace, namespace + ':' + name


class Reference(NamedTuple):
    uri: str
    selectors: Mapping[str, Union[str, Reference, None]]


class OptionSet:

    def __init__(self, as_dict: Mapping[str, str]):
        self.as_dict = dict(as_dict)

    def __repr__(self):
        return f'{OptionSet.__name__}({self.as_dict!r})'

    def __eq__(self, other):
        if not isinstance(other, OptionSet):
            return NotImplemented
        return other.as_dict == self.as_dict

    def raw(self):
        return {'w:Option': [{'@Name': k, '#text': v} for k, v in self.as_dict.items()]}


def selector_set(selectors: Optional[Mapping[str, object]]):
    if not selectors:
        return {}
    elements = []
    for name, value in selectors.items():
        if isinstance(value, str):
            elements.append({'@Name': name, '#text': value})
        elif isinstance(value, Reference):
            elements.append({'@Name': name, 'a:EndpointReference': endpoint_reference(*value)})
        elif value is None:
            elements.append({'@Name': name})
        else:
            raise TypeError(f"Unsupported selector {name}={value!r}")
    return {'w:Selector': elements}


def endpoint_reference(uri: str, selectors):
    return {
        'a:Address': 'http://schemas.xmlsoap.org/ws/2004/08/addressing/role/anonymous',
        'a:ReferenceParameters': {
            'w:ResourceURI': uri,
            'w:SelectorSet': selector_set(selectors),
            },
        }


def parse_reference(raw) -> Reference:
    parameters = raw['a:ReferenceParameters']
    # Singletons, e.g. Win32_OperatingSystem, come without SelectorSet.
    selectors = {}
    for element in (parameters.get('w:SelectorSet') or {}).get('w:Selector', []):
        if '#text' in element:
            selectors[element['@Name']] = element['#text']
        elif 'a:EndpointReference' in element:
            selectors[element['@Name']] = parse_reference(element['a:EndpointReference'])
        elif set(element.keys()).issubset({'@xmlns', '@Name'}):
            selectors[element['@Name']] = None
        else:
            raise ValueError(f"Cannot understand selector: {element}")
    return Reference(parameters['w:ResourceURI'], selectors)


def to_xml_value(data):
    if data is None:
        return {'@xsi:nil': 'true'}
    if data == '':
        return None
    if isinstance(data, dict):
        return {key: to_xml_value(value) for key, value in data.items()}
    if isinstance(data, bool):
        return 'true' if data else 'false'
    if isinstance(data, int):
        return str(data)
    return data


def from_xml_value(data):
    if data is None:
        return ''
    if data == {'@xsi:nil': 'true'}:
        return None
    if isinstance(data, dict):
        return {key: from_xml_value(value) for key, value in data.items()}
    return data


def object_properties(namespace: str, data) -> Mapping[str, object]:
    """Strip the namespace prefix from property names of a WMI object."""
    result = {}
    for key, value in from_xml_value(data).items():
        if key in ('@xmlns', '@xsi:type'):
            continue
        if not key.startswith(namespace + ':'):
            raise ValueError(f"Property {key} is outside of {namespace}")
        name = key[len(namespace) + 1:]
        if isinstance(value, dict) and 'a:ReferenceParameters' in value:
            value = parse_reference(value)
        result[name] = value
    return result
