# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import base64
import hashlib
import logging
import re
import tempfile
import unittest
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.serialization import pkcs12

from provisioning.windows._certificates import CopyCertificates
from provisioning.windows._certificates import GenerateCertificates
from provisioning.windows._certificates import ImportCertificates
from provisioning.windows._certificates import PFX_PASSWORD
from provisioning.windows._certificates import pfx_path
from provisioning.windows._certificates import thumbprint
from provisioning.windows._endpoints import EndpointSpec
from provisioning.windows._endpoints import EndpointTable
from provisioning.windows._endpoints import KeyAlgorithm

_fqdn = 'dc01.domain.test'


class _ScriptedWindows:
    """Answers to run_powershell() in turn."""

    def __init__(self, outcomes):
        self._outcomes = list(outcomes)
        self.variables = []

    def __repr__(self):
        return f'<{_ScriptedWindows.__name__}>'

    def run_powershell(self, script, variables, timeout_sec=60):
        self.variables.append(variables)
        return self._outcomes.pop(0)


class TestGenerate(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls._temp_dir = tempfile.TemporaryDirectory()
        cls.cert_dir = Path(cls._temp_dir.name) / 'cert_setup'
        cls.table = EndpointTable([
            EndpointSpec('cbt-sha1', KeyAlgorithm.SHA1),
            EndpointSpec('cbt-sha512-pss', KeyAlgorithm.SHA512_PSS),
            EndpointSpec('verification'),
            EndpointSpec('verification-bad-ca', self_signed=True),
            EndpointSpec('verification-bad-cn', subject='fake-host'),
            EndpointSpec('verification-other-ca', system_ca=False),
            ], 29900)
        cls.command = GenerateCertificates(cls.cert_dir, cls.table, _fqdn)
        cls.first_run_changed = cls.command.run(None)

    @classmethod
    def tearDownClass(cls):
        cls._temp_dir.cleanup()

    def _load(self, test_name):
        data = pfx_path(self.cert_dir, self.table[test_name]).read_bytes()
        _key, cert, _cas = pkcs12.load_key_and_certificates(data, PFX_PASSWORD.encode())
        return cert

    def _ca(self, name):
        return x509.load_pem_x509_certificate((self.cert_dir / name).read_bytes())

    def test_generated_once(self):
        self.assertTrue(self.first_run_changed)
        self.assertTrue((self.cert_dir / 'complete.txt').exists())
        before = thumbprint(pfx_path(self.cert_dir, self.table['verification']))
        self.assertFalse(self.command.run(None))
        self.assertEqual(thumbprint(pfx_path(self.cert_dir, self.table['verification'])), before)

    def test_thumbprint_format(self):
        value = thumbprint(pfx_path(self.cert_dir, self.table['verification']))
        self.assertRegex(value, re.compile(r'^[0-9A-F]{40}$'))

    def test_subject(self):
        cert = self._load('verification')
        [cn] = cert.subject.get_attributes_for_oid(x509.NameOID.COMMON_NAME)
        self.assertEqual(cn.value, _fqdn)
        cert = self._load('verification-bad-cn')
        [cn] = cert.subject.get_attributes_for_oid(x509.NameOID.COMMON_NAME)
        self.assertEqual(cn.value, 'fake-host')

    def test_signature_hash(self):
        sha1_signed = self._load('cbt-sha1').signature_algorithm_oid
        self.assertEqual(sha1_signed, x509.SignatureAlgorithmOID.RSA_WITH_SHA1)
        self.assertIsInstance(self._load('verification').signature_hash_algorithm, hashes.SHA256)

    def test_sha1_signed_by_common_ca(self):
        cert = self._load('cbt-sha1')
        self.assertEqual(cert.issuer, self._ca('ca.pem').subject)
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        self.assertEqual(san.value.get_values_for_type(x509.DNSName), [_fqdn])
        eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage)
        self.assertIn(x509.ExtendedKeyUsageOID.SERVER_AUTH, eku.value)

    def test_pss(self):
        cert = self._load('cbt-sha512-pss')
        self.assertIsInstance(cert.signature_hash_algorithm, hashes.SHA512)
        self.assertIsInstance(cert.signature_algorithm_parameters, padding.PSS)

    def test_issuers(self):
        common_ca = self._ca('ca.pem')
        explicit_ca = self._ca('ca_explicit.pem')
        self.assertEqual(self._load('verification').issuer, common_ca.subject)
        self.assertEqual(self._load('verification-other-ca').issuer, explicit_ca.subject)
        self.assertNotEqual(common_ca.subject, explicit_ca.subject)
        self._load('verification').verify_directly_issued_by(common_ca)
        self._load('verification-other-ca').verify_directly_issued_by(explicit_ca)

    def test_self_signed(self):
        cert = self._load('verification-bad-ca')
        self.assertEqual(cert.issuer, cert.subject)
        cert.verify_directly_issued_by(cert)

    def test_imported(self):
        expected = thumbprint(pfx_path(self.cert_dir, self.table['cbt-sha1']))
        host = _ScriptedWindows([[expected]])
        self.assertTrue(ImportCertificates(self.cert_dir, self.table).run(host))
        [variables] = host.variables
        self.assertEqual(variables['Password'], PFX_PASSWORD)
        [first, *_] = variables['Certificates']
        self.assertEqual(first, {
            'Path': r'C:\Windows\TEMP\cert_setup\cbt-sha1.pfx',
            'Thumbprint': expected,
            })
        self.assertEqual(len(variables['Certificates']), len(self.table))

    def test_all_imported_already(self):
        host = _ScriptedWindows([[]])
        self.assertFalse(ImportCertificates(self.cert_dir, self.table).run(host))


class TestCopyCertificates(unittest.TestCase):

    def setUp(self):
        self._temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self._temp_dir.cleanup)
        self.cert_dir = Path(self._temp_dir.name)
        self.files = {'ca.pem': b'CA certificate', 'verification.pfx': b'\x30\x82\x0a\x00' * 700}
        for name, data in self.files.items():
            (self.cert_dir / name).write_bytes(data)
        (self.cert_dir / 'subdirectory').mkdir()

    def _hash(self, name):
        return hashlib.sha256(self.files[name]).hexdigest().upper()

    def test_only_different_written(self):
        remote = [
            {'Name': 'ca.pem', 'Hash': self._hash('ca.pem')},
            {'Name': 'verification.pfx', 'Hash': 'ABCDEF'},
            ]
        host = _ScriptedWindows([remote, []])
        self.assertTrue(CopyCertificates(self.cert_dir).run(host))
        [listing, written] = host.variables
        self.assertEqual(listing, {'Directory': r'C:\Windows\TEMP\cert_setup'})
        self.assertEqual(written['Name'], 'verification.pfx')
        self.assertEqual(base64.b64decode(written['Content']), self.files['verification.pfx'])

    def test_all_same(self):
        remote = [{'Name': name, 'Hash': self._hash(name)} for name in self.files]
        host = _ScriptedWindows([remote])
        self.assertFalse(CopyCertificates(self.cert_dir).run(host))
        self.assertEqual(len(host.variables), 1)

    def test_empty_remote_directory(self):
        host = _ScriptedWindows([[], [], []])
        self.assertTrue(CopyCertificates(self.cert_dir).run(host))
        written = sorted(variables['Name'] for variables in host.variables[1:])
        self.assertEqual(written, ['ca.pem', 'verification.pfx'])


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)7s %(name)s %(message).5000s",
        )
    unittest.main()
