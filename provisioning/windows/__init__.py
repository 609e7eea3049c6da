# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Commands for Windows hosts; a host is a WindowsAccess object."""
from provisioning.windows._cbt import CbtHardeningLevel
from provisioning.windows._certificates import CopyCertificates
from provisioning.windows._certificates import GenerateCertificates
from provisioning.windows._certificates import ImportCertificates
from provisioning.windows._certificates import thumbprint
from provisioning.windows._dns_client import DnsClient
from provisioning.windows._dns_client import NetworkConnectionNotFound
from provisioning.windows._domain import DomainLogonMismatch
from provisioning.windows._domain import DomainUser
from provisioning.windows._domain import PromoteDomainController
from provisioning.windows._domain import VerifyDomainLogon
from provisioning.windows._domain import domain_users
from provisioning.windows._endpoints import Endpoint
from provisioning.windows._endpoints import EndpointSpec
from provisioning.windows._endpoints import EndpointTable
from provisioning.windows._endpoints import EndpointTableError
from provisioning.windows._endpoints import KeyAlgorithm
from provisioning.windows._firewall import AllowInboundTcp
from provisioning.windows._firewall import firewall_rules
from provisioning.windows._listeners import AdapterAddressTimeout
from provisioning.windows._listeners import AmbiguousListener
from provisioning.windows._listeners import ListenerReconciler
from provisioning.windows._listeners import ListenerStore
from provisioning.windows._listeners import ReconcileListeners
from provisioning.windows._listeners import plan_listener
from provisioning.windows._loopback import CreateLoopbackAdapters

__all__ = [
    'AdapterAddressTimeout',
    'AllowInboundTcp',
    'AmbiguousListener',
    'CbtHardeningLevel',
    'CopyCertificates',
    'CreateLoopbackAdapters',
    'DnsClient',
    'DomainLogonMismatch',
    'DomainUser',
    'Endpoint',
    'EndpointSpec',
    'EndpointTable',
    'EndpointTableError',
    'GenerateCertificates',
    'ImportCertificates',
    'KeyAlgorithm',
    'ListenerReconciler',
    'ListenerStore',
    'NetworkConnectionNotFound',
    'PromoteDomainController',
    'ReconcileListeners',
    'VerifyDomainLogon',
    'domain_users',
    'firewall_rules',
    'plan_listener',
    'thumbprint',
    ]
