# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
from configparser import ConfigParser
from configparser import NoOptionError
from configparser import NoSectionError
from pathlib import Path

_logger = logging.getLogger(__name__)

_package_dir = Path(__file__).parent


def read_config(*paths: Path) -> ConfigParser:
    """Read files in order; values of later files override earlier ones.

    Missing files are skipped: a per-user file is optional.
    """
    config_parser = ConfigParser()
    for path in paths:
        if path.exists():
            _logger.info("Config %s: read", path)
            config_parser.read(path)
        else:
            _logger.debug("Config %s: skip, not found", path)
    return config_parser


class EnvironmentConfig:

    def __init__(self, parser: ConfigParser, base_dir: Path = _package_dir):
        self._parser = parser
        self._base_dir = base_dir

    def _get(self, section, key):
        try:
            return self._parser.get(section, key)
        except (NoSectionError, NoOptionError) as e:
            raise ConfigError(f"Config value [{section}] {key}: {e}")

    def _path(self, section, key) -> Path:
        path = Path(self._get(section, key)).expanduser()
        if not path.is_absolute():
            path = self._base_dir / path
        return path

    @property
    def windows_address(self) -> str:
        return self._get('windows', 'address')

    @property
    def winrm_port(self) -> int:
        return int(self._get('windows', 'winrm_port'))

    @property
    def windows_username(self) -> str:
        return self._get('windows', 'username')

    @property
    def windows_password(self) -> str:
        return self._get('windows', 'password')

    @property
    def inventory_hostname(self) -> str:
        return self._get('windows', 'inventory_hostname')

    @property
    def domain_name(self) -> str:
        return self._get('domain', 'name')

    @property
    def domain_username(self) -> str:
        return self._get('domain', 'username')

    @property
    def domain_password(self) -> str:
        return self._get('domain', 'password')

    @property
    def domain_upn(self) -> str:
        return self._get('domain', 'upn')

    @property
    def host_fqdn(self) -> str:
        return f'{self.inventory_hostname}.{self.domain_name}'

    @property
    def certificate_base_port(self) -> int:
        return int(self._get('certificates', 'base_port'))

    @property
    def cert_dir(self) -> Path:
        return self._path('certificates', 'dir')

    @property
    def linux_destination(self) -> str:
        return self._get('linux', 'destination')

    @property
    def linux_user(self) -> str:
        return self._get('linux', 'user')

    @property
    def source_dir(self) -> Path:
        return self._path('paths', 'source_dir')

    @property
    def remote_dir(self) -> str:
        return self._get('paths', 'remote_dir')

    @property
    def artifact(self) -> Path:
        return self._path('paths', 'artifact')


class ConfigError(Exception):
    pass


def default_config() -> EnvironmentConfig:
    return EnvironmentConfig(read_config(
        _package_dir / 'config.ini',
        Path('~/.config/integration_environment.ini').expanduser(),
        ))
