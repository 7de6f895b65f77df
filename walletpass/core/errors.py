"""
Wallet pass error taxonomy.

Configuration errors are fatal at construction time. Per-request errors are
caught at the dispatcher boundary and surfaced as IssuanceFailed.
"""
from typing import Optional


class WalletPassError(Exception):
    """Base class for all wallet pass errors"""
    pass


class ConfigurationError(WalletPassError):
    """Missing or malformed credential or template"""
    pass


class CredentialMissing(ConfigurationError):
    """A required key/cert file or environment value is absent"""
    pass


class CredentialMalformed(ConfigurationError):
    """Credential content could not be parsed"""
    pass


class TemplateInvalid(ConfigurationError):
    """Template directory lacks a mandatory structural piece"""
    pass


class AssetReadError(WalletPassError):
    """An asset file exists but could not be read"""
    pass


class SigningFailure(WalletPassError):
    """Cryptographic signing of the manifest failed"""
    pass


class SigningKeyRejected(SigningFailure):
    """Key could not be decrypted, does not match the certificate, or the chain is expired"""
    pass


class RemoteError(WalletPassError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteUnavailable(RemoteError):
    """Network failure or unexpected remote status; eligible for caller retry"""
    pass


class AuthFailed(RemoteError):
    """The remote service rejected the service credential"""
    pass


class RemoteConflict(RemoteError):
    """Resource already exists; treated as success"""
    pass


class ClassConflict(RemoteConflict):
    pass


class ObjectConflict(RemoteConflict):
    pass


class PlatformNotEnabled(WalletPassError):
    """The requested wallet platform is switched off in settings"""

    def __init__(self, platform: str):
        super().__init__(f"{platform} wallet passes are not enabled on this environment")
        self.platform = platform


class IssuanceFailed(WalletPassError):
    """Opaque per-request failure reported to the caller"""

    def __init__(self, platform: str, message: str = "Failed to generate pass"):
        super().__init__(message)
        self.platform = platform
