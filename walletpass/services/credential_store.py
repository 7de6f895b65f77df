"""
Credential Store

Loads the signing material for Apple Wallet passes (signer certificate,
private key, WWDR intermediate) and the Google service-account key used for
the Wallet Objects API and save-to-wallet JWTs.

Loading is all-or-nothing: either every required piece parses, or a
ConfigurationError is raised before any pass can be built. Credentials are
immutable once loaded and safe to share between concurrent requests.
"""
import os
import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple, Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization.pkcs12 import load_key_and_certificates

from walletpass.config import Settings, get_settings
from walletpass.core.errors import CredentialMissing, CredentialMalformed

logger = logging.getLogger(__name__)

SIGNER_CERT_FILE = "signerCert.pem"
SIGNER_KEY_FILE = "signerKey.pem"
WWDR_CERT_FILE = "wwdr.pem"

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


@dataclass(frozen=True)
class SigningCredential:
    """
    Apple Wallet signing material.

    The private key is kept in its PEM form (possibly encrypted) and only
    decrypted when a manifest is signed.
    """
    certificate: x509.Certificate
    intermediate: x509.Certificate
    private_key_pem: bytes
    passphrase: Optional[str] = None
    key_encrypted: bool = False

    @property
    def certificate_chain(self) -> Tuple[x509.Certificate, x509.Certificate]:
        return (self.certificate, self.intermediate)


@dataclass(frozen=True)
class ServiceCredential:
    """Google service account identity used for API auth and JWT signing"""
    account_identifier: str
    private_key: str
    key_identifier: str
    token_uri: str = GOOGLE_TOKEN_URI

    def to_service_account_info(self) -> dict:
        return {
            "type": "service_account",
            "client_email": self.account_identifier,
            "private_key": self.private_key,
            "private_key_id": self.key_identifier,
            "token_uri": self.token_uri,
        }


@dataclass(frozen=True)
class AppleCertificateSource:
    cert_directory: str
    passphrase: str = ""
    p12_path: Optional[str] = None


@dataclass(frozen=True)
class GoogleServiceAccountSource:
    key_path: Optional[str] = None
    key_json: Optional[str] = None


def _read_file(path: str, description: str) -> bytes:
    if not path or not os.path.exists(path):
        raise CredentialMissing(f"{description} not found at {path}")
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise CredentialMissing(f"{description} could not be read at {path}: {e}") from e


def _load_certificate(data: bytes, description: str) -> x509.Certificate:
    try:
        if data.lstrip().startswith(b"-----BEGIN"):
            return x509.load_pem_x509_certificate(data)
        # Apple distributes WWDR as DER (.cer)
        return x509.load_der_x509_certificate(data)
    except ValueError as e:
        raise CredentialMalformed(f"{description} is not a valid X.509 certificate: {e}") from e


def _inspect_private_key(data: bytes) -> bool:
    """
    Check that data is a parseable PEM private key.

    Returns True if the key is encrypted (parsing is then deferred to
    signing time, when the passphrase is applied).
    """
    if b"PRIVATE KEY-----" not in data:
        raise CredentialMalformed("Signer key is not a PEM encoded private key")
    try:
        serialization.load_pem_private_key(data, password=None)
    except TypeError:
        return True
    except (ValueError, UnsupportedAlgorithm) as e:
        raise CredentialMalformed(f"Signer key could not be parsed: {e}") from e
    return False


def _load_p12(source: AppleCertificateSource) -> Tuple[x509.Certificate, bytes, bool]:
    p12_data = _read_file(source.p12_path, "P12 certificate bundle")
    password_bytes = source.passphrase.encode() if source.passphrase else None
    try:
        private_key, cert, _additional = load_key_and_certificates(p12_data, password_bytes)
    except ValueError as e:
        raise CredentialMalformed(f"Failed to load P12 certificate bundle: {e}") from e

    if private_key is None or cert is None:
        raise CredentialMalformed("P12 bundle must contain both a private key and a certificate")

    # Re-encode so the signer handles P12 and PEM material the same way
    if source.passphrase:
        encryption = serialization.BestAvailableEncryption(source.passphrase.encode())
    else:
        encryption = serialization.NoEncryption()
    key_pem = private_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        encryption,
    )
    return cert, key_pem, bool(source.passphrase)


def load_signing_credential(source: AppleCertificateSource) -> SigningCredential:
    """
    Load Apple Wallet signing material.

    Supports a P12 bundle (when p12_path is set) or PEM cert/key files in
    cert_directory. The WWDR intermediate is always read from cert_directory.

    Raises:
        CredentialMissing: a required file is absent
        CredentialMalformed: a file cannot be parsed
    """
    wwdr_path = os.path.join(source.cert_directory, WWDR_CERT_FILE)

    if source.p12_path:
        certificate, key_pem, key_encrypted = _load_p12(source)
        logger.debug("Loaded P12 certificate for Apple Wallet signing")
    else:
        cert_path = os.path.join(source.cert_directory, SIGNER_CERT_FILE)
        key_path = os.path.join(source.cert_directory, SIGNER_KEY_FILE)
        cert_data = _read_file(cert_path, "Signer certificate")
        key_pem = _read_file(key_path, "Signer key")
        certificate = _load_certificate(cert_data, "Signer certificate")
        key_encrypted = _inspect_private_key(key_pem)
        logger.debug("Loaded PEM certificate/key for Apple Wallet signing")

    intermediate = _load_certificate(_read_file(wwdr_path, "WWDR certificate"), "WWDR certificate")

    expires = certificate.not_valid_after_utc
    logger.info(
        f"Apple Wallet signing credential loaded (subject={certificate.subject.rfc4514_string()}, "
        f"expires={expires.isoformat()}, encrypted_key={key_encrypted})"
    )
    if expires < datetime.now(timezone.utc):
        logger.warning("Apple Wallet signer certificate has expired; signing will be rejected")

    return SigningCredential(
        certificate=certificate,
        intermediate=intermediate,
        private_key_pem=key_pem,
        passphrase=source.passphrase or None,
        key_encrypted=key_encrypted,
    )


def load_service_credential(source: GoogleServiceAccountSource) -> ServiceCredential:
    """
    Load a Google service-account key from inline JSON or a key file.

    Raises:
        CredentialMissing: no key configured, or a required field is absent
        CredentialMalformed: invalid JSON or an unparseable private key
    """
    if source.key_json:
        raw = source.key_json
    else:
        raw = _read_file(source.key_path, "Google service account key").decode("utf-8")

    try:
        key_data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CredentialMalformed(f"Invalid service account key JSON: {e}") from e

    if not isinstance(key_data, dict):
        raise CredentialMalformed("Service account key JSON must be an object")

    missing = [
        field for field in ("client_email", "private_key", "private_key_id")
        if not key_data.get(field)
    ]
    if missing:
        raise CredentialMissing(f"Service account key missing {', '.join(missing)}")

    try:
        serialization.load_pem_private_key(key_data["private_key"].encode(), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CredentialMalformed(f"Service account private key could not be parsed: {e}") from e

    logger.info(f"Google service account credential loaded ({key_data['client_email']})")

    return ServiceCredential(
        account_identifier=key_data["client_email"],
        private_key=key_data["private_key"],
        key_identifier=key_data["private_key_id"],
        token_uri=key_data.get("token_uri") or GOOGLE_TOKEN_URI,
    )


def load(source: Union[AppleCertificateSource, GoogleServiceAccountSource]) -> Union[SigningCredential, ServiceCredential]:
    if isinstance(source, AppleCertificateSource):
        return load_signing_credential(source)
    if isinstance(source, GoogleServiceAccountSource):
        return load_service_credential(source)
    raise TypeError(f"Unsupported credential source: {type(source).__name__}")


class CredentialStore:
    """
    Holds the process-wide credentials.

    Each credential is loaded on first use and cached; failed loads are not
    cached, so the error is raised again to every caller.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._lock = threading.Lock()
        self._signing: Optional[SigningCredential] = None
        self._service: Optional[ServiceCredential] = None

    def apple_source(self) -> AppleCertificateSource:
        return AppleCertificateSource(
            cert_directory=self.settings.apple_cert_directory,
            passphrase=self.settings.apple_cert_password,
            p12_path=self.settings.apple_wallet_cert_p12_path,
        )

    def google_source(self) -> GoogleServiceAccountSource:
        return GoogleServiceAccountSource(
            key_path=self.settings.google_wallet_service_account_path,
            key_json=self.settings.google_wallet_service_account_json,
        )

    def signing_credential(self) -> SigningCredential:
        with self._lock:
            if self._signing is None:
                self._signing = load_signing_credential(self.apple_source())
            return self._signing

    def service_credential(self) -> ServiceCredential:
        with self._lock:
            if self._service is None:
                self._service = load_service_credential(self.google_source())
            return self._service
