# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
from pathlib import Path
from typing import Callable
from typing import Collection
from typing import FrozenSet
from typing import List
from typing import NamedTuple
from typing import Sequence
from typing import Tuple

from integration_environment._config import EnvironmentConfig
from provisioning import AddUserToGroup
from provisioning import AptInstall
from provisioning import AptKey
from provisioning import AptRepository
from provisioning import AptUpgrade
from provisioning import Command
from provisioning import EnsureDirectory
from provisioning import Fleet
from provisioning import LineInFile
from provisioning import ResolvConfHead
from provisioning import ServiceEnabled
from provisioning import Synchronize
from provisioning import Template
from provisioning import Unarchive
from provisioning.windows import CbtHardeningLevel
from provisioning.windows import CopyCertificates
from provisioning.windows import CreateLoopbackAdapters
from provisioning.windows import DnsClient
from provisioning.windows import EndpointSpec
from provisioning.windows import EndpointTable
from provisioning.windows import GenerateCertificates
from provisioning.windows import ImportCertificates
from provisioning.windows import KeyAlgorithm
from provisioning.windows import PromoteDomainController
from provisioning.windows import ReconcileListeners
from provisioning.windows import VerifyDomainLogon
from provisioning.windows import domain_users
from provisioning.windows import firewall_rules
from windows_access import WindowsAccess

# The default port 5986 has a self-signed certificate, not trusted at all.
# Tests find endpoints by friendly names of certificates.
endpoint_specs = [
    EndpointSpec('cbt-sha1', KeyAlgorithm.SHA1),
    EndpointSpec('cbt-sha256', KeyAlgorithm.SHA256),
    EndpointSpec('cbt-sha256-pss', KeyAlgorithm.SHA256_PSS),
    EndpointSpec('cbt-sha384', KeyAlgorithm.SHA384),
    EndpointSpec('cbt-sha512', KeyAlgorithm.SHA512),
    EndpointSpec('cbt-sha512-pss', KeyAlgorithm.SHA512_PSS),
    EndpointSpec('verification'),
    EndpointSpec('verification-bad-ca', self_signed=True),
    EndpointSpec('verification-bad-cn', subject='fake-host'),
    EndpointSpec('verification-other-ca', system_ca=False),
    ]

TAGS = ('windows', 'linux', 'build_artifacts')

_packages = [
    'apt-transport-https',
    'ca-certificates',
    'curl',
    'git',
    'gnupg2',
    'software-properties-common',
    'unzip',
    'wget',
    ]

_rsync_excludes = [
    '.git',
    'integration_environment/.vagrant',
    # May be a symlink, which rsync copies badly.
    'Unix/output',
    ]


class Step(NamedTuple):
    tags: FrozenSet[str]
    command: Command


class Play(NamedTuple):
    name: str
    make_fleet: Callable[[], Fleet]
    steps: Sequence[Step]


def endpoint_table(config: EnvironmentConfig) -> EndpointTable:
    return EndpointTable(endpoint_specs, config.certificate_base_port)


def windows_play(config: EnvironmentConfig) -> Play:
    table = endpoint_table(config)
    cert_dir = config.cert_dir
    commands = [
        GenerateCertificates(cert_dir, table, config.host_fqdn),
        CopyCertificates(cert_dir),
        ImportCertificates(cert_dir, table),
        CreateLoopbackAdapters(table),
        ReconcileListeners(table, cert_dir, config.windows_address),
        *firewall_rules(table),
        CbtHardeningLevel('Strict'),
        DnsClient(config.windows_address, ['127.0.0.1']),
        PromoteDomainController(config.domain_name, config.domain_password),
        *domain_users(
            config.domain_username,
            config.domain_upn,
            config.domain_password,
            config.domain_name),
        VerifyDomainLogon(config.domain_name, config.domain_upn, config.domain_password),
        ]

    def make_fleet():
        return Fleet([WindowsAccess(
            config.windows_address,
            config.windows_username,
            config.windows_password,
            port=config.winrm_port,
            )])

    return Play("Domain controller", make_fleet, [Step(frozenset({'windows'}), c) for c in commands])


def linux_play(config: EnvironmentConfig) -> Play:
    dc_address = config.windows_address
    remote_dir = config.remote_dir.rstrip('/')
    build_dir = remote_dir + '/build'
    commands = [
        AptUpgrade(),
        AptInstall(_packages),
        AptKey('https://download.docker.com/linux/debian/gpg', '/etc/apt/keyrings/docker.asc'),
        AptRepository(
            '/etc/apt/sources.list.d/docker.list',
            'deb [arch=amd64 signed-by=/etc/apt/keyrings/docker.asc] '
            'https://download.docker.com/linux/debian {codename} stable'),
        AptInstall(['docker-ce']),
        ServiceEnabled('docker'),
        AddUserToGroup(config.linux_user, 'docker'),
        LineInFile('/etc/hosts', f'{dc_address} dc01 dc01.{config.domain_name}'),
        ResolvConfHead([dc_address, '8.8.8.8']),
        Synchronize(config.source_dir, remote_dir, _rsync_excludes),
        Template(Path(__file__).with_name('krb5.conf.tmpl'), remote_dir + '/krb5.conf', {
            'realm': config.domain_name.upper(),
            'domain': config.domain_name,
            'dc_hostname': config.inventory_hostname.lower(),
            }),
        ]
    artifact_commands = [
        EnsureDirectory(build_dir),
        Unarchive(config.artifact, build_dir),
        ]
    steps = [
        *[Step(frozenset({'linux'}), c) for c in commands],
        *[Step(frozenset({'linux', 'build_artifacts'}), c) for c in artifact_commands],
        ]
    return Play("Test host", lambda: Fleet([config.linux_destination]), steps)


def all_plays(config: EnvironmentConfig) -> Sequence[Play]:
    return [windows_play(config), linux_play(config)]


def select(plays: Sequence[Play], tags: Collection[str]) -> List[Tuple[Play, List[Command]]]:
    """Steps having any of the tags; all steps if no tags given.

    Plays without selected steps are omitted.
    """
    selected = []
    for play in plays:
        commands = [s.command for s in play.steps if not tags or s.tags & set(tags)]
        if commands:
            selected.append((play, commands))
    return selected


def needs_artifact(plays: Sequence[Play], tags: Collection[str]) -> bool:
    for play in plays:
        for step in play.steps:
            if 'build_artifacts' in step.tags and (not tags or step.tags & set(tags)):
                return True
    return False


def check_artifact(config: EnvironmentConfig):
    if not config.artifact.exists():
        raise MissingArtifact(
            f"{config.artifact} not found. "
            f"Download {config.artifact.name} from the GitHub Actions run "
            f"that contains the PSWSMan nupkg and place it at {config.artifact}.")


class MissingArtifact(Exception):
    pass


_logger = logging.getLogger(__name__)
