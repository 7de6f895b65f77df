"""
Pass Dispatcher

Chooses the wallet platform from the caller's User-Agent, builds the pass
record and runs the Apple (signed archive) or Google (save token) path.
Component errors stop here and surface as a single IssuanceFailed.
"""
import re
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from walletpass.config import Settings, get_settings
from walletpass.core.errors import IssuanceFailed, PlatformNotEnabled, WalletPassError
from walletpass.schemas import PassInputData, PassRecord
from walletpass.services import apple_wallet_pass
from walletpass.services.credential_store import CredentialStore, ServiceCredential
from walletpass.services.google_wallet_service import GoogleWalletIssuer
from walletpass.services.pass_builder import PassBuilder, PassTemplate, get_template

logger = logging.getLogger(__name__)

APPLE = "apple"
GOOGLE = "google"
UNKNOWN = "unknown"

_APPLE_AGENT = re.compile(r"iPhone|iPad|iPod|Mac")
_ANDROID_AGENT = re.compile(r"Android")


def detect_platform(user_agent: Optional[str]) -> str:
    """Map a User-Agent to apple, google or unknown"""
    user_agent = user_agent or ""
    if _APPLE_AGENT.search(user_agent):
        return APPLE
    if _ANDROID_AGENT.search(user_agent):
        return GOOGLE
    return UNKNOWN


@dataclass(frozen=True)
class IssuedPass:
    platform: str
    serial_number: str
    pkpass: Optional[bytes] = None
    filename: Optional[str] = None
    save_url: Optional[str] = None


class PassDispatcher:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        credential_store: Optional[CredentialStore] = None,
        builder: Optional[PassBuilder] = None,
        issuer_factory: Optional[Callable[[ServiceCredential, Settings], GoogleWalletIssuer]] = None,
    ):
        self.settings = settings or get_settings()
        self.credentials = credential_store or CredentialStore(self.settings)
        self.builder = builder or PassBuilder(self.settings)
        self._issuer_factory = issuer_factory or (lambda cred, s: GoogleWalletIssuer(cred, settings=s))

    def template(self) -> PassTemplate:
        return get_template(self.settings.pass_template_dir)

    def preload(self) -> None:
        """
        Load templates and credentials for every enabled platform.

        Raises ConfigurationError so a misconfigured service fails at startup
        instead of on the first request.
        """
        if self.settings.apple_wallet_enabled:
            self.template()
            self.credentials.signing_credential()
        if self.settings.google_wallet_enabled:
            self._issuer_factory(self.credentials.service_credential(), self.settings)
        logger.info(
            f"Pass dispatcher ready (apple={self.settings.apple_wallet_enabled}, "
            f"google={self.settings.google_wallet_enabled})"
        )

    def _build(self, subject: str, data: Optional[PassInputData]) -> PassRecord:
        return self.builder.build(self.template(), subject, data)

    def issue_apple(self, subject: str, data: Optional[PassInputData] = None) -> IssuedPass:
        if not self.settings.apple_wallet_enabled:
            raise PlatformNotEnabled(APPLE)
        try:
            template = self.template()
            record = self.builder.build(template, subject, data)
            bundle = apple_wallet_pass.sign(record, template, self.credentials.signing_credential())
        except (WalletPassError, ValueError) as e:
            logger.error(f"Error generating Apple Wallet pass for {subject!r}: {e}", exc_info=True)
            raise IssuanceFailed(APPLE) from e

        return IssuedPass(
            platform=APPLE,
            serial_number=record.serial_number,
            pkpass=bundle,
            filename=apple_wallet_pass.pass_filename(record),
        )

    def issue_google(self, subject: str, data: Optional[PassInputData] = None) -> IssuedPass:
        if not self.settings.google_wallet_enabled:
            raise PlatformNotEnabled(GOOGLE)
        try:
            record = self._build(subject, data)
            issuer = self._issuer_factory(self.credentials.service_credential(), self.settings)
            token = issuer.issue(record)
        except (WalletPassError, ValueError) as e:
            logger.error(f"Error generating Google Wallet pass for {subject!r}: {e}", exc_info=True)
            raise IssuanceFailed(GOOGLE) from e

        return IssuedPass(
            platform=GOOGLE,
            serial_number=record.serial_number,
            save_url=issuer.save_url(token),
        )

    def issue(self, platform: str, subject: str, data: Optional[PassInputData] = None) -> List[IssuedPass]:
        """
        Issue for one platform, or for every enabled platform when unknown.
        """
        if platform == APPLE:
            return [self.issue_apple(subject, data)]
        if platform == GOOGLE:
            return [self.issue_google(subject, data)]

        issued = []
        if self.settings.apple_wallet_enabled:
            issued.append(self.issue_apple(subject, data))
        if self.settings.google_wallet_enabled:
            issued.append(self.issue_google(subject, data))
        if not issued:
            raise PlatformNotEnabled(UNKNOWN)
        return issued
