# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Test certificates for the HTTPS listeners.

Two CAs are generated: the common one, which clients are expected to trust,
and the explicit one, which the tests pass to the client explicitly.
Each endpoint gets a PFX file with a key and a certificate,
issued by one of the CAs or self-signed.

Certificates are generated once per environment: once the directory
is complete, it's never regenerated, so thumbprints stay the same.
"""
import base64
import hashlib
import logging
import os
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from pathlib import Path
from subprocess import PIPE
from subprocess import run
from tempfile import TemporaryDirectory
from typing import Optional
from typing import Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12

from provisioning._core import Command
from provisioning.windows._endpoints import Endpoint
from provisioning.windows._endpoints import EndpointTable
from provisioning.windows._endpoints import KeyAlgorithm
from windows_access import WindowsAccess

PFX_PASSWORD = 'password'
REMOTE_CERT_DIR = r'C:\Windows\TEMP\cert_setup'
_COMPLETE_MARK = 'complete.txt'
_VALIDITY_DAYS = 365 * 3
_openssl = 'openssl' if os.name != 'nt' else r'C:\Program Files\Git\usr\bin\openssl.exe'

_hash_algorithms = {
    'sha256': hashes.SHA256,
    'sha384': hashes.SHA384,
    'sha512': hashes.SHA512,
    }


def pfx_path(cert_dir: Path, endpoint: Endpoint) -> Path:
    return cert_dir / f'{endpoint.test_name}.pfx'


def thumbprint(pfx: Path) -> str:
    """SHA-1 of the certificate, as Windows shows it."""
    _key, cert, _cas = pkcs12.load_key_and_certificates(pfx.read_bytes(), PFX_PASSWORD.encode())
    return cert.fingerprint(hashes.SHA1()).hex().upper()


def generate_certificates(cert_dir: Path, table: EndpointTable, host_fqdn: str):
    cert_dir.mkdir(parents=True, exist_ok=True)
    common_ca = _Issuer.new_ca("WinRM Test CA")
    explicit_ca = _Issuer.new_ca("WinRM Test Explicit CA")
    (cert_dir / 'ca.pem').write_bytes(common_ca.cert_pem())
    (cert_dir / 'ca_explicit.pem').write_bytes(explicit_ca.cert_pem())
    for endpoint in table:
        spec = endpoint.spec
        subject = endpoint.subject(host_fqdn)
        _logger.debug("%s: generate key and certificate for %s", endpoint.test_name, subject)
        key = _generate_key()
        if spec.self_signed:
            cert = _issue(key, subject, None, spec.key_algorithm)
        else:
            issuer = common_ca if spec.system_ca else explicit_ca
            cert = _issue(key, subject, issuer, spec.key_algorithm)
        path = pfx_path(cert_dir, endpoint)
        path.write_bytes(_serialize_pfx(endpoint.friendly_name, key, cert))
        (cert_dir / f'{endpoint.test_name}.pem').write_bytes(
            cert.public_bytes(serialization.Encoding.PEM))
        _logger.info("%s: %s", path, cert.fingerprint(hashes.SHA1()).hex().upper())
    (cert_dir / _COMPLETE_MARK).write_text(f"Generated for {host_fqdn}\n")


class _Issuer:

    def __init__(self, key: rsa.RSAPrivateKey, cert: x509.Certificate):
        self.key = key
        self.cert = cert

    @classmethod
    def new_ca(cls, common_name: str):
        key = _generate_key()
        name = _name(common_name)
        ski = x509.SubjectKeyIdentifier.from_public_key(key.public_key())
        usage = x509.KeyUsage(
            digital_signature=True,
            content_commitment=False,
            key_encipherment=False,
            data_encipherment=False,
            key_agreement=False,
            key_cert_sign=True,
            crl_sign=True,
            encipher_only=False,
            decipher_only=False,
            )
        not_before, not_after = _validity()
        cert = (
            x509.CertificateBuilder()
                .subject_name(name)
                .issuer_name(name)
                .not_valid_before(not_before)
                .not_valid_after(not_after)
                .serial_number(x509.random_serial_number())
                .public_key(key.public_key())
                .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
                .add_extension(usage, critical=True)
                .add_extension(ski, critical=False)
                .sign(key, hashes.SHA256()))
        return cls(key, cert)

    def cert_pem(self) -> bytes:
        return self.cert.public_bytes(serialization.Encoding.PEM)


def _issue(key, subject: str, issuer: Optional[_Issuer], algorithm: KeyAlgorithm):
    """Issue by the issuer or, if there is none, self-sign."""
    if issuer is None:
        issuer_key = key
        issuer_name = _name(subject)
    else:
        issuer_key = issuer.key
        issuer_name = issuer.cert.subject
    usage = x509.KeyUsage(
        digital_signature=True,
        content_commitment=False,
        key_encipherment=True,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=False,
        crl_sign=False,
        encipher_only=False,
        decipher_only=False,
        )
    not_before, not_after = _validity()
    builder = (
        x509.CertificateBuilder()
            .subject_name(_name(subject))
            .issuer_name(issuer_name)
            .not_valid_before(not_before)
            .not_valid_after(not_after)
            .serial_number(x509.random_serial_number())
            .public_key(key.public_key())
            .add_extension(x509.SubjectAlternativeName([x509.DNSName(subject)]), critical=False)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(usage, critical=True)
            .add_extension(x509.ExtendedKeyUsage([x509.ExtendedKeyUsageOID.SERVER_AUTH]), critical=False))
    if algorithm.hash_name() == 'sha1':
        # Recent cryptography refuses to sign with SHA-1.
        # Key identifiers are left to OpenSSL.
        cert = builder.sign(issuer_key, hashes.SHA256())
        return _resign_sha1(cert, issuer_key, None if issuer is None else issuer.cert)
    builder = builder.add_extension(
        x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_key.public_key()),
        critical=False)
    hash_algorithm = _hash_algorithms[algorithm.hash_name()]()
    if algorithm.is_pss():
        pss = padding.PSS(mgf=padding.MGF1(hash_algorithm), salt_length=padding.PSS.DIGEST_LENGTH)
        return builder.sign(issuer_key, hash_algorithm, rsa_padding=pss)
    return builder.sign(issuer_key, hash_algorithm)


def _resign_sha1(cert: x509.Certificate, issuer_key, issuer_cert: Optional[x509.Certificate]):
    """Sign the certificate again with SHA-1 by the OpenSSL CLI.

    Extensions, subject and serial number are kept.
    Without the issuer certificate, the result is self-signed.
    """
    with TemporaryDirectory() as temp_dir:
        directory = Path(temp_dir)
        cert_file = directory / 'cert.pem'
        cert_file.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
        key_file = directory / 'issuer_key.pem'
        key_file.write_bytes(issuer_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
            ))
        command = [
            _openssl, 'x509',
            '-in', str(cert_file),
            '-sha1',
            '-days', str(_VALIDITY_DAYS),
            ]
        if issuer_cert is None:
            command += ['-signkey', str(key_file)]
        else:
            issuer_file = directory / 'issuer.pem'
            issuer_file.write_bytes(issuer_cert.public_bytes(serialization.Encoding.PEM))
            command += [
                '-CA', str(issuer_file),
                '-CAkey', str(key_file),
                '-set_serial', str(cert.serial_number),
                ]
        _logger.debug("Run: %s", ' '.join(command))
        result = run(command, stdout=PIPE, stderr=PIPE, check=True)
    return x509.load_pem_x509_certificate(result.stdout)


def _serialize_pfx(friendly_name: str, key, cert) -> bytes:
    # Older Windows cannot import PFX with AES encryption.
    encryption = (
        serialization.PrivateFormat.PKCS12.encryption_builder()
            .kdf_rounds(50000)
            .key_cert_algorithm(pkcs12.PBES.PBESv1SHA1And3KeyTripleDESCBC)
            .hmac_hash(hashes.SHA1())
            .build(PFX_PASSWORD.encode()))
    return pkcs12.serialize_key_and_certificates(
        friendly_name.encode(), key, cert, None, encryption)


def _generate_key():
    return rsa.generate_private_key(65537, 2048)


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(x509.NameOID.COMMON_NAME, common_name)])


def _validity() -> Tuple[datetime, datetime]:
    now = datetime.now(timezone.utc)
    return now - timedelta(days=1), now + timedelta(days=_VALIDITY_DAYS)


class GenerateCertificates(Command):
    """Generate locally, unless generated already."""

    def __init__(self, cert_dir: Path, table: EndpointTable, host_fqdn: str):
        self._cert_dir = cert_dir
        self._table = table
        self._host_fqdn = host_fqdn

    def __repr__(self):
        return f'{GenerateCertificates.__name__}({str(self._cert_dir)!r}, {self._host_fqdn!r})'

    def run(self, host):
        if (self._cert_dir / _COMPLETE_MARK).exists():
            _logger.info("%s: already generated", self._cert_dir)
            return False
        generate_certificates(self._cert_dir, self._table, self._host_fqdn)
        return True


class CopyCertificates(Command):
    """Mirror files of the local directory; rewrite only different ones."""

    def __init__(self, cert_dir: Path, remote_dir: str = REMOTE_CERT_DIR):
        self._cert_dir = cert_dir
        self._remote_dir = remote_dir

    def __repr__(self):
        return f'{CopyCertificates.__name__}({str(self._cert_dir)!r}, {self._remote_dir!r})'

    def run(self, host: WindowsAccess):
        remote_hashes = self._remote_hashes(host)
        changed = False
        for path in sorted(self._cert_dir.iterdir()):
            if not path.is_file():
                continue
            data = path.read_bytes()
            if remote_hashes.get(path.name) == hashlib.sha256(data).hexdigest().upper():
                continue
            # One file per request.
            # language=PowerShell
            script = '''
                $path = Join-Path $Directory $Name
                [IO.File]::WriteAllBytes($path, [Convert]::FromBase64String($Content))
                '''
            host.run_powershell(script, {
                'Directory': self._remote_dir,
                'Name': path.name,
                'Content': base64.b64encode(data).decode('ascii'),
                })
            _logger.info("%s: %s\\%s: written", host, self._remote_dir, path.name)
            changed = True
        return changed

    def _remote_hashes(self, host: WindowsAccess):
        # language=PowerShell
        script = '''
            $null = New-Item -ItemType Directory -Path $Directory -Force
            Get-ChildItem -LiteralPath $Directory -File | ForEach-Object {
                @{Name = $_.Name; Hash = (Get-FileHash -LiteralPath $_.FullName -Algorithm SHA256).Hash}
            }
            '''
        files = host.run_powershell(script, {'Directory': self._remote_dir})
        return {f['Name']: f['Hash'] for f in files}


class ImportCertificates(Command):
    """Import to LocalMachine\\My, the key is not exportable."""

    def __init__(self, cert_dir: Path, table: EndpointTable, remote_dir: str = REMOTE_CERT_DIR):
        self._cert_dir = cert_dir
        self._table = table
        self._remote_dir = remote_dir

    def __repr__(self):
        return f'{ImportCertificates.__name__}({str(self._cert_dir)!r})'

    def run(self, host: WindowsAccess):
        certificates = []
        for endpoint in self._table:
            local = pfx_path(self._cert_dir, endpoint)
            certificates.append({
                'Path': self._remote_dir + '\\' + local.name,
                'Thumbprint': thumbprint(local),
                })
        # language=PowerShell
        script = '''
            $securePassword = ConvertTo-SecureString -String $Password -AsPlainText -Force
            foreach ($certificate in $Certificates) {
                if (Test-Path -LiteralPath "Cert:\\LocalMachine\\My\\$($certificate.Thumbprint)") {
                    continue
                }
                $null = Import-PfxCertificate `
                    -FilePath $certificate.Path `
                    -CertStoreLocation Cert:\\LocalMachine\\My `
                    -Password $securePassword
                $certificate.Thumbprint
            }
            '''
        imported = host.run_powershell(script, {'Password': PFX_PASSWORD, 'Certificates': certificates})
        for t in imported:
            _logger.info("%s: certificate %s: imported", host, t)
        return bool(imported)


_logger = logging.getLogger(__name__)
