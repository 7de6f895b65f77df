"""
Pytest configuration and fixtures for the wallet pass service tests.

Signing material is generated per session with cryptography: a CA standing
in for Apple WWDR, a signer certificate issued by it, and an RSA
service-account key for Google.
"""
import sys
import json
import shutil
import pathlib
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from walletpass.config import Settings  # noqa: E402
from walletpass.services.credential_store import (  # noqa: E402
    AppleCertificateSource,
    GoogleServiceAccountSource,
    load_signing_credential,
    load_service_credential,
)
from walletpass.services.pass_builder import PassTemplate  # noqa: E402

TEMPLATE_SOURCE = ROOT / "walletpass" / "models" / "eventTicket.pass"
PASSPHRASE = "correct horse"
ISSUER_ID = "3388000000022123456"
BASE_URL = "https://passes.example.com"


def make_certificate(common_name, public_key, issuer_name, issuer_key, is_ca=False,
                     not_before=None, not_after=None):
    now = datetime.now(timezone.utc)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_name or subject)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before or now - timedelta(days=1))
        .not_valid_after(not_after or now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
        .sign(issuer_key, hashes.SHA256())
    )


def pem_cert(cert) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


def pem_key(key, passphrase=None) -> bytes:
    if passphrase:
        encryption = serialization.BestAvailableEncryption(passphrase.encode())
    else:
        encryption = serialization.NoEncryption()
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        encryption,
    )


@pytest.fixture(scope="session")
def wwdr_material():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    cert = make_certificate("Test WWDR Authority", key.public_key(), None, key, is_ca=True)
    return key, cert


@pytest.fixture(scope="session")
def signer_material(wwdr_material):
    wwdr_key, wwdr_cert = wwdr_material
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    cert = make_certificate("Pass Type ID: pass.com.example.event", key.public_key(),
                            wwdr_cert.subject, wwdr_key)
    return key, cert


@pytest.fixture(scope="session")
def service_account_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def cert_dir(tmp_path, wwdr_material, signer_material):
    """Certificate directory with an encrypted signer key"""
    _, wwdr_cert = wwdr_material
    signer_key, signer_cert = signer_material
    directory = tmp_path / "certificates"
    directory.mkdir()
    (directory / "signerCert.pem").write_bytes(pem_cert(signer_cert))
    (directory / "signerKey.pem").write_bytes(pem_key(signer_key, PASSPHRASE))
    (directory / "wwdr.pem").write_bytes(pem_cert(wwdr_cert))
    return directory


@pytest.fixture
def template_dir(tmp_path):
    """Writable copy of the bundled eventTicket template"""
    target = tmp_path / "eventTicket.pass"
    shutil.copytree(TEMPLATE_SOURCE, target)
    return target


@pytest.fixture
def template(template_dir):
    return PassTemplate.load(template_dir)


@pytest.fixture
def service_account_info(service_account_key):
    return {
        "type": "service_account",
        "project_id": "wallet-test",
        "private_key_id": "key-123",
        "private_key": pem_key(service_account_key).decode(),
        "client_email": "wallet@wallet-test.iam.gserviceaccount.com",
        "token_uri": "https://oauth2.googleapis.com/token",
    }


@pytest.fixture
def service_account_file(tmp_path, service_account_info):
    path = tmp_path / "service-account.json"
    path.write_text(json.dumps(service_account_info))
    return path


@pytest.fixture
def settings(cert_dir, template_dir, service_account_file):
    return Settings(
        public_base_url=BASE_URL,
        organization_name="Test Org",
        pass_template_dir=str(template_dir),
        apple_cert_directory=str(cert_dir),
        apple_cert_password=PASSPHRASE,
        apple_wallet_cert_p12_path=None,
        apple_pass_type_id="pass.com.example.event",
        apple_team_id="ABCDE12345",
        apple_cert_bootstrap=False,
        google_wallet_issuer_id=ISSUER_ID,
        google_wallet_class_id="generic-pass",
        google_wallet_issuer_name="Test Issuer",
        google_wallet_service_account_path=str(service_account_file),
        google_wallet_service_account_json=None,
        google_wallet_origins=[],
        serial_nonce_enabled=False,
    )


@pytest.fixture
def signing_credential(cert_dir):
    return load_signing_credential(AppleCertificateSource(str(cert_dir), PASSPHRASE))


@pytest.fixture
def service_credential(service_account_file):
    return load_service_credential(GoogleServiceAccountSource(key_path=str(service_account_file)))


@pytest.fixture
def passphrase():
    return PASSPHRASE


@pytest.fixture
def certificate_factory():
    return make_certificate
