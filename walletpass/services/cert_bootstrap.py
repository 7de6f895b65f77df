"""
Apple certificate bootstrap

Writes base64-encoded signing material from environment variables into the
certificate directory, for hosts where secrets arrive only as env vars.
Runs once at startup, before the Credential Store loads anything.
"""
import os
import base64
import binascii
import logging
from typing import Dict, Mapping, Optional

from walletpass.core.errors import CredentialMissing, CredentialMalformed
from walletpass.services.credential_store import SIGNER_CERT_FILE, SIGNER_KEY_FILE, WWDR_CERT_FILE

logger = logging.getLogger(__name__)

ENV_FILES = (
    ("APPLE_SIGNER_CERT_B64", SIGNER_CERT_FILE),
    ("APPLE_SIGNER_KEY_B64", SIGNER_KEY_FILE),
    ("APPLE_WWDR_CERT_B64", WWDR_CERT_FILE),
)


def _decode_env(environ: Mapping[str, str], env_var: str) -> bytes:
    value = environ.get(env_var)
    if not value:
        raise CredentialMissing(f"Missing env var: {env_var}")

    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CredentialMalformed(f"{env_var} is not valid base64: {e}") from e


def _write_secret(target_path: str, data: bytes) -> None:
    fd = os.open(target_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    os.chmod(target_path, 0o600)


def write_certificates_from_env(target_dir: str, environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """
    Decode the APPLE_*_B64 variables into target_dir.

    Returns:
        Mapping of filename -> written path

    Raises:
        CredentialMissing: a variable is unset
        CredentialMalformed: a variable is not base64
    """
    environ = os.environ if environ is None else environ

    # Nothing is written unless every variable decodes
    decoded = {filename: _decode_env(environ, env_var) for env_var, filename in ENV_FILES}

    os.makedirs(target_dir, exist_ok=True)
    written = {}
    for filename, data in decoded.items():
        path = os.path.join(target_dir, filename)
        _write_secret(path, data)
        written[filename] = path

    # Log presence only, never contents
    logger.info(f"Apple certificate bootstrap complete in {target_dir}")
    for filename, path in written.items():
        logger.info(f"Apple certificate {filename} exists: {os.path.exists(path)}")

    return written
