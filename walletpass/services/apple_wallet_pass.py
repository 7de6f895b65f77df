"""
Apple Wallet Pass Signer

Builds signed .pkpass bundles: pass.json merged from the template and the
pass record, a SHA-1 manifest of every packaged file, a detached PKCS#7
signature over the manifest, and the template image assets, zipped together.
"""
import re
import json
import hashlib
import zipfile
import logging
from io import BytesIO
from datetime import datetime, timezone
from typing import Dict, Any

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import pkcs7

from walletpass.core.errors import AssetReadError, SigningFailure, SigningKeyRejected
from walletpass.schemas import PassRecord
from walletpass.services.credential_store import SigningCredential
from walletpass.services.pass_builder import PassTemplate, ASSET_FILES, DESCRIPTOR_FILE

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"
SIGNATURE_FILE = "signature"

PKPASS_MEDIA_TYPE = "application/vnd.apple.pkpass"
PKPASS_EXTENSION = "pkpass"

_HEX_COLOR = re.compile(r"^#?([0-9a-fA-F]{6})$")


def pass_filename(record: PassRecord) -> str:
    return f"{record.serial_number}.{PKPASS_EXTENSION}"


def _css_color(value: str) -> str:
    """pass.json colors are CSS rgb() triples; convert #rrggbb input"""
    match = _HEX_COLOR.match(value.strip())
    if not match:
        return value
    hex_value = match.group(1)
    r, g, b = (int(hex_value[i:i + 2], 16) for i in (0, 2, 4))
    return f"rgb({r}, {g}, {b})"


def _create_pass_json(record: PassRecord, template: PassTemplate) -> Dict[str, Any]:
    """
    Merge the record into a copy of the template descriptor.

    Zone arrays are replaced outright so template placeholder fields never
    reach the output.
    """
    pass_data = template.base_descriptor()

    pass_data.update({
        "formatVersion": 1,
        "passTypeIdentifier": record.pass_type_identifier,
        "serialNumber": record.serial_number,
        "teamIdentifier": record.team_identifier,
        "organizationName": record.organization_name,
        "description": record.description,
        "logoText": record.logo_text,
    })

    if record.background_color:
        pass_data["backgroundColor"] = _css_color(record.background_color)

    style = pass_data.get(template.style)
    if not isinstance(style, dict):
        style = {}
    for zone, fields in record.zones().items():
        style[zone] = [f.to_pass_dict() for f in fields]
    pass_data[template.style] = style

    barcode = record.barcode.to_pass_dict()
    pass_data["barcode"] = barcode
    pass_data["barcodes"] = [barcode]

    return pass_data


def _serialize_pass_json(pass_data: Dict[str, Any]) -> bytes:
    return json.dumps(pass_data, indent=2, sort_keys=True, ensure_ascii=False).encode("utf-8")


def _read_asset(template: PassTemplate, filename: str) -> bytes:
    path = template.asset_path(filename)
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise AssetReadError(f"Failed to read asset {path}: {e}") from e


def _collect_pass_files(pass_json: bytes, template: PassTemplate) -> Dict[str, bytes]:
    """
    Collect pass.json and every template asset present on disk.

    Missing or unreadable assets are logged and left out; a pass without a
    strip image is better than no pass.
    """
    pass_files = {DESCRIPTOR_FILE: pass_json}

    for filename in ASSET_FILES:
        if not template.asset_path(filename).exists():
            logger.warning(f"Pass asset {filename} not found in template {template.name}, omitting")
            continue
        try:
            pass_files[filename] = _read_asset(template, filename)
        except AssetReadError as e:
            logger.warning(f"{e}, omitting")

    return pass_files


def _create_manifest(pass_files: Dict[str, bytes]) -> Dict[str, str]:
    """
    Create manifest.json with SHA1 hashes of all files.

    Args:
        pass_files: Dict of filename -> bytes content
    """
    manifest = {}
    for filename, content in pass_files.items():
        manifest[filename] = hashlib.sha1(content).hexdigest()
    return manifest


def _serialize_manifest(manifest: Dict[str, str]) -> bytes:
    return json.dumps(manifest, sort_keys=True).encode("utf-8")


def _load_private_key(cred: SigningCredential):
    password = None
    if cred.key_encrypted:
        password = cred.passphrase.encode() if cred.passphrase else None
    try:
        return serialization.load_pem_private_key(cred.private_key_pem, password=password)
    except (ValueError, TypeError) as e:
        raise SigningKeyRejected(f"Signer key could not be decrypted: {e}") from e


def _check_credential(cred: SigningCredential, private_key) -> None:
    if not isinstance(private_key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise SigningKeyRejected(f"Unsupported signer key type: {type(private_key).__name__}")

    spki = serialization.PublicFormat.SubjectPublicKeyInfo
    key_public = private_key.public_key().public_bytes(serialization.Encoding.DER, spki)
    cert_public = cred.certificate.public_key().public_bytes(serialization.Encoding.DER, spki)
    if key_public != cert_public:
        raise SigningKeyRejected("Signer key does not match the signer certificate")

    now = datetime.now(timezone.utc)
    for name, cert in (("Signer", cred.certificate), ("WWDR", cred.intermediate)):
        if not cert.not_valid_before_utc <= now <= cert.not_valid_after_utc:
            raise SigningKeyRejected(
                f"{name} certificate is not valid now "
                f"({cert.not_valid_before_utc.isoformat()} - {cert.not_valid_after_utc.isoformat()})"
            )


def _sign_manifest(manifest_json: bytes, cred: SigningCredential) -> bytes:
    """
    Create the detached PKCS#7 signature over manifest.json.

    The signer certificate and the WWDR intermediate are embedded so a
    verifier holding only the Apple root can validate the chain.

    Raises:
        SigningKeyRejected: key/certificate problems
        SigningFailure: any other signing error
    """
    private_key = _load_private_key(cred)
    _check_credential(cred, private_key)

    try:
        return (
            pkcs7.PKCS7SignatureBuilder()
            .set_data(manifest_json)
            .add_signer(cred.certificate, private_key, hashes.SHA256())
            .add_certificate(cred.intermediate)
            .sign(
                serialization.Encoding.DER,
                [pkcs7.PKCS7Options.DetachedSignature, pkcs7.PKCS7Options.Binary],
            )
        )
    except (ValueError, TypeError) as e:
        raise SigningFailure(f"Failed to sign pass manifest: {e}") from e


def _zip_bundle(pass_files: Dict[str, bytes]) -> bytes:
    bundle = BytesIO()
    with zipfile.ZipFile(bundle, "w", zipfile.ZIP_DEFLATED) as zf:
        for filename, content in pass_files.items():
            zf.writestr(filename, content)
    return bundle.getvalue()


def sign(record: PassRecord, template: PassTemplate, cred: SigningCredential) -> bytes:
    """
    Create a signed .pkpass bundle.

    Args:
        record: Pass record from the builder
        template: Template the record was built from
        cred: Apple signing credential

    Returns:
        The .pkpass file as bytes

    Raises:
        SigningFailure: if the manifest cannot be signed (no bundle is produced)
    """
    pass_json = _serialize_pass_json(_create_pass_json(record, template))
    pass_files = _collect_pass_files(pass_json, template)

    manifest_json = _serialize_manifest(_create_manifest(pass_files))
    signature = _sign_manifest(manifest_json, cred)

    pass_files[MANIFEST_FILE] = manifest_json
    pass_files[SIGNATURE_FILE] = signature

    bundle_bytes = _zip_bundle(pass_files)

    logger.info(
        f"Created Apple Wallet pass bundle {record.serial_number} "
        f"({len(pass_files)} files, size={len(bundle_bytes)} bytes)"
    )
    return bundle_bytes
