# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import time

from provisioning._core import Command
from windows_access import PowershellError
from windows_access import WindowsAccess


class PromoteDomainController(Command):
    """Create a new forest with this host as its domain controller."""

    def __init__(self, domain_name: str, safe_mode_password: str):
        self._domain_name = domain_name
        self._safe_mode_password = safe_mode_password

    def __repr__(self):
        return f'{PromoteDomainController.__name__}({self._domain_name!r})'

    def run(self, host: WindowsAccess):
        # 4 and 5 are backup and primary domain controllers.
        # language=PowerShell
        script = '(Get-CimInstance -ClassName Win32_ComputerSystem).DomainRole'
        [domain_role] = host.run_powershell(script, {})
        if domain_role >= 4:
            _logger.info("%s: already a domain controller", host)
            return False
        _logger.info("%s: install AD DS and create forest %s", host, self._domain_name)
        # language=PowerShell
        script = '''
            $null = Install-WindowsFeature -Name AD-Domain-Services -IncludeManagementTools
            $null = Install-ADDSForest `
                -DomainName $DomainName `
                -SafeModeAdministratorPassword (ConvertTo-SecureString $Password -AsPlainText -Force) `
                -InstallDns `
                -NoRebootOnCompletion `
                -Force
            '''
        host.run_powershell(
            script,
            {'DomainName': self._domain_name, 'Password': self._safe_mode_password},
            timeout_sec=1800)
        host.reboot(timeout_sec=1800)
        return True


class DomainUser(Command):
    """Domain user in the Domain Admins group.

    Password is set only when the user is created.
    Right after promotion, AD Web Services may be not running yet,
    that's why attempts are repeated.
    """

    def __init__(
            self,
            name: str,
            upn: str,
            description: str,
            password: str,
            attempts: int = 30,
            delay_sec: float = 15,
            ):
        self._name = name
        self._upn = upn
        self._description = description
        self._password = password
        self._attempts = attempts
        self._delay_sec = delay_sec

    def __repr__(self):
        return f'{DomainUser.__name__}({self._name!r}, {self._upn!r})'

    def run(self, host: WindowsAccess):
        attempt = 1
        while True:
            try:
                return self._ensure(host)
            except PowershellError as e:
                if attempt >= self._attempts:
                    raise
                _logger.info(
                    "%s: %s: attempt %d of %d failed: %s",
                    host, self._name, attempt, self._attempts, e.message)
                attempt += 1
                time.sleep(self._delay_sec)

    def _ensure(self, host: WindowsAccess) -> bool:
        # language=PowerShell
        script = '''
            $changed = $false
            $user = Get-ADUser -Filter "SamAccountName -eq '$Name'" -Properties Description, PasswordNeverExpires
            if (-not $user) {
                New-ADUser `
                    -Name $Name `
                    -SamAccountName $Name `
                    -UserPrincipalName $Upn `
                    -Description $Description `
                    -AccountPassword (ConvertTo-SecureString $Password -AsPlainText -Force) `
                    -PasswordNeverExpires $true `
                    -Enabled $true
                $changed = $true
            } elseif (
                    $user.UserPrincipalName -ne $Upn -or
                    $user.Description -ne $Description -or
                    -not $user.PasswordNeverExpires -or
                    -not $user.Enabled) {
                Set-ADUser `
                    -Identity $user `
                    -UserPrincipalName $Upn `
                    -Description $Description `
                    -PasswordNeverExpires $true `
                    -Enabled $true
                $changed = $true
            }
            $admins = Get-ADGroupMember -Identity 'Domain Admins' | ForEach-Object { $_.SamAccountName }
            if ($admins -notcontains $Name) {
                Add-ADGroupMember -Identity 'Domain Admins' -Members $Name
                $changed = $true
            }
            $changed
            '''
        [changed] = host.run_powershell(script, {
            'Name': self._name,
            'Upn': self._upn,
            'Description': self._description,
            'Password': self._password,
            })
        return changed


class VerifyDomainLogon(Command):
    """Credentials are accepted by the domain and resolve to the UPN.

    Nothing is changed; a failure stops provisioning.
    """

    def __init__(self, domain_name: str, upn: str, password: str):
        self._domain_name = domain_name
        self._upn = upn
        self._password = password

    def __repr__(self):
        return f'{VerifyDomainLogon.__name__}({self._upn!r})'

    def run(self, host: WindowsAccess):
        # language=PowerShell
        script = '''
            Add-Type -AssemblyName System.DirectoryServices.AccountManagement
            $context = New-Object System.DirectoryServices.AccountManagement.PrincipalContext(
                [System.DirectoryServices.AccountManagement.ContextType]::Domain, $DomainName)
            if (-not $context.ValidateCredentials($Upn, $Password)) {
                throw "Domain rejected credentials of $Upn"
            }
            $user = [System.DirectoryServices.AccountManagement.UserPrincipal]::FindByIdentity($context, $Upn)
            $user.UserPrincipalName
            '''
        [upn] = host.run_powershell(script, {
            'DomainName': self._domain_name,
            'Upn': self._upn,
            'Password': self._password,
            })
        if upn != self._upn:
            raise DomainLogonMismatch(f"Logged on as {upn} instead of {self._upn}")
        _logger.info("%s: %s: logon verified", host, upn)
        return False


def domain_users(username: str, upn: str, password: str, domain_name: str):
    return [
        DomainUser(username, upn, f'{username} Domain Account', password),
        DomainUser(
            f'{username}2',
            f'{username}2@{domain_name.upper()}',
            f'{username} 2 Domain Account',
            password),
        ]


class DomainLogonMismatch(Exception):
    pass


_logger = logging.getLogger(__name__)
