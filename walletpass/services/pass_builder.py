"""
Pass Model Builder

Loads pass templates (a `<name>.pass` directory holding a base pass.json and
image assets) and builds a PassRecord from a subject id plus caller data.
Every caller field is optional; missing values fall back to defaults.
"""
import re
import json
import copy
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

from walletpass.config import Settings, get_settings
from walletpass.core.errors import TemplateInvalid
from walletpass.schemas import PassInputData, PassRecord, PassField, PassBarcode

logger = logging.getLogger(__name__)

DESCRIPTOR_FILE = "pass.json"

# Standard and @2x variants, in manifest order
ASSET_FILES = (
    "icon.png",
    "icon@2x.png",
    "logo.png",
    "logo@2x.png",
    "strip.png",
    "strip@2x.png",
)
REQUIRED_ASSET_FILES = ("icon.png",)

PASS_STYLES = ("boardingPass", "coupon", "eventTicket", "generic", "storeCard")

DEFAULT_DESCRIPTION = "Event Access Pass"

_TIMESTAMP_SUFFIX = re.compile(r"-\d{13}$")
_SERIAL_SHAPE = re.compile(r"^pass-(.+)-\d{13}(?:-[0-9a-f]{8})?$")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


@dataclass(frozen=True)
class PassTemplate:
    """A read-only pass template directory"""
    name: str
    directory: Path
    descriptor: Dict[str, Any] = field(repr=False)
    style: str = "generic"
    version: int = 1

    @classmethod
    def load(cls, directory) -> "PassTemplate":
        """
        Load and validate a template directory.

        Raises:
            TemplateInvalid: if pass.json or a required asset is missing,
                or pass.json is not a pass descriptor
        """
        path = Path(directory)
        if not path.is_dir():
            raise TemplateInvalid(f"Template not found: {path}")

        descriptor_path = path / DESCRIPTOR_FILE
        if not descriptor_path.exists():
            raise TemplateInvalid(f"Template {path.name} is missing {DESCRIPTOR_FILE}")

        try:
            with open(descriptor_path, "r", encoding="utf-8") as f:
                descriptor = json.load(f)
        except (OSError, ValueError) as e:
            raise TemplateInvalid(f"Template {path.name} has an unreadable {DESCRIPTOR_FILE}: {e}") from e

        if not isinstance(descriptor, dict):
            raise TemplateInvalid(f"Template {path.name} {DESCRIPTOR_FILE} must be a JSON object")

        styles = [s for s in PASS_STYLES if s in descriptor]
        if len(styles) != 1:
            raise TemplateInvalid(
                f"Template {path.name} must declare exactly one pass style "
                f"({', '.join(PASS_STYLES)}), found {styles or 'none'}"
            )

        missing = [name for name in REQUIRED_ASSET_FILES if not (path / name).exists()]
        if missing:
            raise TemplateInvalid(f"Template {path.name} is missing required assets: {', '.join(missing)}")

        version = descriptor.get("formatVersion", 1)
        logger.debug(f"Loaded pass template {path.name} (style={styles[0]}, version={version})")

        return cls(
            name=path.name,
            directory=path,
            descriptor=descriptor,
            style=styles[0],
            version=version,
        )

    def base_descriptor(self) -> Dict[str, Any]:
        """A private copy of the base descriptor, safe to modify"""
        return copy.deepcopy(self.descriptor)

    def asset_path(self, filename: str) -> Path:
        return self.directory / filename


@lru_cache(maxsize=16)
def get_template(directory: str) -> PassTemplate:
    """Load a template once per process"""
    return PassTemplate.load(directory)


def normalize_subject(subject: str) -> str:
    """
    Normalize a caller-supplied subject id.

    Strips artifacts of earlier issuances that callers sometimes echo back
    (a `.pkpass` extension, a whole serial number, a millisecond timestamp
    suffix) and replaces characters that are not valid in a remote object id.
    A `pass-` prefix is only removed as part of a full serial number.
    """
    value = (subject or "").strip()
    if value.lower().endswith(".pkpass"):
        value = value[: -len(".pkpass")]
    serial = _SERIAL_SHAPE.match(value)
    if serial:
        value = serial.group(1)
    else:
        value = _TIMESTAMP_SUFFIX.sub("", value)
    value = _UNSAFE_CHARS.sub("_", value)
    if not value:
        raise ValueError("subject id is required")
    return value


def _timestamp_ms(issued_at: datetime) -> int:
    if issued_at.tzinfo is None:
        issued_at = issued_at.replace(tzinfo=timezone.utc)
    return int(issued_at.timestamp() * 1000)


def make_instance_id(subject: str, issued_at: datetime, nonce: Optional[str] = None) -> str:
    """
    Per-issuance id shared by the Apple serial number and the Google object id.

    Subject plus millisecond timestamp; two calls for the same subject in the
    same millisecond collide unless a nonce is supplied.
    """
    instance_id = f"{subject}-{_timestamp_ms(issued_at)}"
    if nonce:
        instance_id = f"{instance_id}-{nonce}"
    return instance_id


def barcode_message(base_url: str, subject: str, data: PassInputData) -> str:
    """
    Barcode payload: an absolute profileUrl as-is, otherwise the base domain
    joined with referrerPath, otherwise a default profile path for the subject.
    """
    base = base_url.rstrip("/")
    if data.profile_url:
        if data.profile_url.startswith(("http://", "https://")):
            return data.profile_url
        return f"{base}/{data.profile_url.lstrip('/')}"
    if data.referrer_path:
        if data.referrer_path.startswith(("http://", "https://")):
            return data.referrer_path
        return f"{base}/{data.referrer_path.lstrip('/')}"
    return f"{base}/u/{subject}"


def _field(key: str, label: str, value: str) -> Tuple[PassField, ...]:
    return (PassField(key=key, label=label, value=value),)


class PassBuilder:
    """Builds PassRecords from a template and caller data"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def build(
        self,
        template: PassTemplate,
        subject: str,
        data: Optional[PassInputData] = None,
        issued_at: Optional[datetime] = None,
        nonce: Optional[str] = None,
    ) -> PassRecord:
        """
        Build a PassRecord.

        Args:
            template: Loaded pass template
            subject: Subject (user) id; normalized before use
            data: Optional caller data
            issued_at: Issuance time, part of the serial number (defaults to now)
            nonce: Optional extra serial component for stronger uniqueness

        Returns:
            A new, immutable PassRecord
        """
        data = data or PassInputData()
        subject_id = normalize_subject(subject)
        issued_at = issued_at or datetime.now(timezone.utc)
        descriptor = template.descriptor

        if nonce is None and self.settings.serial_nonce_enabled:
            nonce = secrets.token_hex(4)
        instance_id = make_instance_id(subject_id, issued_at, nonce)

        organization_name = data.organization_name or self.settings.organization_name
        description = data.description or descriptor.get("description") or DEFAULT_DESCRIPTION
        pass_type_identifier = (
            data.pass_type_identifier
            or self.settings.apple_pass_type_id
            or descriptor.get("passTypeIdentifier", "")
        )
        team_identifier = (
            data.team_or_issuer_identifier
            or self.settings.apple_team_id
            or descriptor.get("teamIdentifier", "")
        )

        message = barcode_message(self.settings.public_base_url, subject_id, data)

        record = PassRecord(
            subject_id=subject_id,
            instance_id=instance_id,
            serial_number=f"pass-{instance_id}",
            issued_at=issued_at,
            organization_name=organization_name,
            pass_type_identifier=pass_type_identifier,
            team_identifier=team_identifier,
            description=description,
            logo_text=data.organization_name or descriptor.get("logoText") or organization_name,
            header_fields=_field("header", data.header_label or "EVENT", data.header_value or "VIP Access"),
            primary_fields=_field("member", "MEMBER", data.member_name or "Member"),
            secondary_fields=_field("location", "LOCATION", data.location or "Main Entrance"),
            auxiliary_fields=_field("title", "TITLE", data.title or DEFAULT_DESCRIPTION),
            back_fields=(
                PassField(key="organization", label="Organization", value=organization_name),
                PassField(key="profile", label="Profile", value=message),
            ),
            barcode=PassBarcode(message=message, alt_text=subject_id),
            background_color=data.background_color,
            logo_url=data.logo_url,
            hero_image_url=data.hero_image_url,
        )

        logger.debug(f"Built pass record {record.serial_number} from template {template.name}")
        return record


def build(
    template: PassTemplate,
    subject: str,
    data: Optional[PassInputData] = None,
    issued_at: Optional[datetime] = None,
    nonce: Optional[str] = None,
) -> PassRecord:
    return PassBuilder().build(template, subject, data, issued_at=issued_at, nonce=nonce)
