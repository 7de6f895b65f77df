"""
Pass data models.

Per-request values (PassRecord and its parts) are frozen; field lists are
tuples so a record never shares a mutable list with a template.
"""
from datetime import datetime
from typing import Optional, Tuple, Any, Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PassInputData(BaseModel):
    """Caller-supplied pass data. Every field is optional."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    organization_name: Optional[str] = Field(None, alias="organizationName")
    description: Optional[str] = None
    member_name: Optional[str] = Field(None, alias="memberName")
    title: Optional[str] = None
    header_label: Optional[str] = Field(None, alias="headerLabel")
    header_value: Optional[str] = Field(None, alias="headerValue")
    location: Optional[str] = None
    referrer_path: Optional[str] = Field(None, alias="referrerPath")
    profile_url: Optional[str] = Field(None, alias="profileUrl")
    pass_type_identifier: Optional[str] = Field(None, alias="passTypeIdentifier")
    team_or_issuer_identifier: Optional[str] = Field(None, alias="teamOrIssuerIdentifier")
    logo_url: Optional[str] = Field(None, alias="logoUrl")
    hero_image_url: Optional[str] = Field(None, alias="heroImageUrl")
    background_color: Optional[str] = Field(None, alias="backgroundColor")


class PassField(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    value: str

    def to_pass_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "value": self.value,
            "textAlignment": "PKTextAlignmentNatural",
        }


class PassBarcode(BaseModel):
    model_config = ConfigDict(frozen=True)

    format: str = "PKBarcodeFormatQR"
    message: str
    message_encoding: str = "iso-8859-1"
    alt_text: Optional[str] = None

    def to_pass_dict(self) -> Dict[str, Any]:
        data = {
            "format": self.format,
            "message": self.message,
            "messageEncoding": self.message_encoding,
        }
        if self.alt_text:
            data["altText"] = self.alt_text
        return data


class PassRecord(BaseModel):
    """One pass instance, built fresh per request."""
    model_config = ConfigDict(frozen=True)

    subject_id: str
    instance_id: str
    serial_number: str
    issued_at: datetime
    organization_name: str
    pass_type_identifier: str
    team_identifier: str
    description: str
    logo_text: str

    header_fields: Tuple[PassField, ...] = ()
    primary_fields: Tuple[PassField, ...] = ()
    secondary_fields: Tuple[PassField, ...] = ()
    auxiliary_fields: Tuple[PassField, ...] = ()
    back_fields: Tuple[PassField, ...] = ()

    barcode: PassBarcode

    background_color: Optional[str] = None
    logo_url: Optional[str] = None
    hero_image_url: Optional[str] = None

    def zones(self) -> Dict[str, Tuple[PassField, ...]]:
        """Field zones keyed by their pass.json array name"""
        return {
            "headerFields": self.header_fields,
            "primaryFields": self.primary_fields,
            "secondaryFields": self.secondary_fields,
            "auxiliaryFields": self.auxiliary_fields,
            "backFields": self.back_fields,
        }


class GeneratePassRequest(BaseModel):
    """Body of POST /generate-pass"""
    user_agent: Optional[str] = Field(None, alias="userAgent")
    user_id: Optional[str] = Field(None, alias="userId")
    pass_data: Optional[PassInputData] = Field(None, alias="passData")

    model_config = ConfigDict(populate_by_name=True)


class PlatformPassRequest(BaseModel):
    """Body of the per-platform issuance endpoints"""
    user_id: str = Field(..., alias="userId")
    pass_data: PassInputData = Field(default_factory=PassInputData, alias="passData")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("user_id")
    @classmethod
    def user_id_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("userId must not be blank")
        return v
