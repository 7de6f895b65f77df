"""
Google Wallet Service

Upserts a generic class/object pair through the Wallet Objects REST API and
mints the signed "Save to Google Wallet" JWT referencing the object.

Round-trips are strictly sequential: access token, class check (and create),
object create (or update). Nothing is retried here; RemoteUnavailable is the
caller's signal that a retry may help.
"""
import logging
from typing import Callable, Dict, Any, Optional

import httpx
import jwt
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from walletpass.config import Settings, get_settings
from walletpass.core.errors import (
    AuthFailed,
    ClassConflict,
    CredentialMissing,
    ObjectConflict,
    RemoteUnavailable,
    SigningFailure,
)
from walletpass.schemas import PassRecord
from walletpass.services.credential_store import ServiceCredential

logger = logging.getLogger(__name__)

WALLET_OBJECT_SCOPE = "https://www.googleapis.com/auth/wallet_object.issuer"
DEFAULT_BACKGROUND_COLOR = "#4285f4"
LANGUAGE = "en-US"


def fetch_access_token(credential: ServiceCredential) -> str:
    """
    Exchange the service-account key for an OAuth access token.

    Raises:
        AuthFailed: the token endpoint rejected the credential
        RemoteUnavailable: the token endpoint could not be reached
    """
    creds = service_account.Credentials.from_service_account_info(
        credential.to_service_account_info(),
        scopes=[WALLET_OBJECT_SCOPE],
    )
    try:
        creds.refresh(GoogleAuthRequest())
    except google_auth_exceptions.RefreshError as e:
        raise AuthFailed(f"Google rejected the service account credential: {e}") from e
    except google_auth_exceptions.TransportError as e:
        raise RemoteUnavailable(f"Google token endpoint unavailable: {e}") from e
    return creds.token


def _localized(value: str) -> Dict[str, Any]:
    return {"defaultValue": {"language": LANGUAGE, "value": value}}


def _raise_for_status(resp: httpx.Response, action: str) -> None:
    """Map a non-success response to the error taxonomy"""
    if resp.status_code in (401, 403):
        logger.error(f"Google Wallet {action} rejected credentials: {resp.status_code} {resp.text[:200]}")
        raise AuthFailed(f"Google Wallet {action} rejected credentials", status_code=resp.status_code)
    logger.error(f"Google Wallet {action} failed: {resp.status_code} {resp.text[:200]}")
    raise RemoteUnavailable(f"Google Wallet {action} failed", status_code=resp.status_code)


class GoogleWalletIssuer:
    """Issues Google Wallet generic passes for pass records"""

    def __init__(
        self,
        credential: ServiceCredential,
        settings: Optional[Settings] = None,
        token_provider: Callable[[ServiceCredential], str] = fetch_access_token,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.credential = credential
        self.settings = settings or get_settings()
        if not self.settings.google_wallet_issuer_id:
            raise CredentialMissing("GOOGLE_WALLET_ISSUER_ID environment variable is required")
        self.issuer_id = self.settings.google_wallet_issuer_id
        self.api_base = self.settings.google_wallet_api_base.rstrip("/")
        self._token_provider = token_provider
        self._transport = transport

    @property
    def class_id(self) -> str:
        return f"{self.issuer_id}.{self.settings.google_wallet_class_id}"

    def object_id(self, record: PassRecord) -> str:
        return f"{self.issuer_id}.{record.instance_id}"

    def _authorized_client(self, access_token: str) -> httpx.Client:
        """
        Create an HTTP client authorized with the OAuth access token (Bearer).
        """
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json; charset=UTF-8",
        }
        return httpx.Client(
            timeout=self.settings.google_wallet_http_timeout_s,
            headers=headers,
            transport=self._transport,
        )

    def build_class_payload(self, record: PassRecord) -> Dict[str, Any]:
        return {
            "id": self.class_id,
            "issuerName": self.settings.google_wallet_issuer_name or record.organization_name,
            "reviewStatus": "UNDER_REVIEW",
            "multipleDevicesAndHoldersAllowedStatus": "ONE_USER_ALL_DEVICES",
        }

    def build_object_payload(self, record: PassRecord) -> Dict[str, Any]:
        """
        Build the generic object for a record.

        The Apple zones map onto the generic layout: header field value as
        subheader, member (primary) as header, the rest as text modules.
        """
        header = record.header_fields[0].value if record.header_fields else record.description
        member = record.primary_fields[0].value if record.primary_fields else record.subject_id

        text_modules = [
            {"id": f.key, "header": f.label, "body": f.value}
            for f in record.secondary_fields + record.primary_fields + record.auxiliary_fields
        ]

        payload = {
            "id": self.object_id(record),
            "classId": self.class_id,
            "genericType": "GENERIC_TYPE_UNSPECIFIED",
            "state": "ACTIVE",
            "hexBackgroundColor": record.background_color or DEFAULT_BACKGROUND_COLOR,
            "cardTitle": _localized(record.organization_name),
            "subheader": _localized(header),
            "header": _localized(member),
            "barcode": {
                "type": "QR_CODE",
                "value": record.barcode.message,
                "alternateText": record.barcode.alt_text or "",
            },
            "textModulesData": text_modules,
        }

        # Google rejects images with empty URIs
        if record.logo_url:
            payload["logo"] = {"sourceUri": {"uri": record.logo_url}}
        if record.hero_image_url:
            payload["heroImage"] = {"sourceUri": {"uri": record.hero_image_url}}

        return payload

    def _create_class(self, client: httpx.Client, record: PassRecord) -> None:
        resp = client.post(f"{self.api_base}/genericClass", json=self.build_class_payload(record))
        if resp.status_code in (200, 201):
            logger.info(f"Created Google Wallet class {self.class_id}")
            return
        if resp.status_code == 409:
            raise ClassConflict(f"Class {self.class_id} already exists", status_code=409)
        _raise_for_status(resp, "class create")

    def _ensure_class_exists(self, client: httpx.Client, record: PassRecord) -> None:
        resp = client.get(f"{self.api_base}/genericClass/{self.class_id}")
        if resp.status_code == 200:
            return
        if resp.status_code != 404:
            _raise_for_status(resp, "class lookup")

        try:
            self._create_class(client, record)
        except ClassConflict:
            # Lost a race with a concurrent first issuance
            logger.info(f"Google Wallet class {self.class_id} created concurrently, continuing")

    def _post_object(self, client: httpx.Client, payload: Dict[str, Any]) -> None:
        resp = client.post(f"{self.api_base}/genericObject", json=payload)
        if resp.status_code in (200, 201):
            return
        if resp.status_code == 409:
            raise ObjectConflict(f"Object {payload['id']} already exists", status_code=409)
        _raise_for_status(resp, "object create")

    def _update_object(self, client: httpx.Client, payload: Dict[str, Any]) -> None:
        resp = client.put(f"{self.api_base}/genericObject/{payload['id']}", json=payload)
        if resp.status_code != 200:
            _raise_for_status(resp, "object update")

    def _upsert_object(self, client: httpx.Client, payload: Dict[str, Any]) -> None:
        try:
            self._post_object(client, payload)
        except ObjectConflict:
            logger.debug(f"Object already exists, updating: {payload['id']}")
            self._update_object(client, payload)

    def create_jwt(self, object_id: str) -> str:
        """
        Sign the save-to-wallet JWT for one object.

        No exp claim is set; Google's own policy governs token lifetime.
        """
        claims = {
            "iss": self.credential.account_identifier,
            "aud": "google",
            "typ": "savetowallet",
            "payload": {
                "genericObjects": [{"id": object_id}]
            },
        }
        if self.settings.google_wallet_origins:
            claims["origins"] = list(self.settings.google_wallet_origins)

        try:
            return jwt.encode(
                claims,
                self.credential.private_key,
                algorithm="RS256",
                headers={"kid": self.credential.key_identifier, "typ": "JWT"},
            )
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise SigningFailure(f"Failed to sign save-to-wallet JWT: {e}") from e

    def save_url(self, token: str) -> str:
        return f"{self.settings.google_wallet_save_url}{token}"

    def issue(self, record: PassRecord) -> str:
        """
        Upsert the class/object for a record and return the signed save token.

        Raises:
            AuthFailed: credential rejected by Google
            RemoteUnavailable: network failure or unexpected status
            SigningFailure: the JWT could not be signed
        """
        access_token = self._token_provider(self.credential)
        payload = self.build_object_payload(record)

        try:
            with self._authorized_client(access_token) as client:
                self._ensure_class_exists(client, record)
                self._upsert_object(client, payload)
        except httpx.HTTPError as e:
            logger.error(f"Google Wallet API unreachable: {e}")
            raise RemoteUnavailable(f"Google Wallet API unreachable: {e}") from e

        token = self.create_jwt(payload["id"])
        logger.info(f"Issued Google Wallet save token for object {payload['id']}")
        return token


def issue(record: PassRecord, service_cred: ServiceCredential, settings: Optional[Settings] = None) -> str:
    return GoogleWalletIssuer(service_cred, settings=settings).issue(record)
