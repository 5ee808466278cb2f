"""Service account authorization for Google Drive."""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional

import google.auth.exceptions
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from ..config.schema import ServiceAccountCredentials
from ..utils.logging import get_logger, log_async_execution_time

DRIVE_SCOPE = "https://www.googleapis.com/auth/drive"
TOKEN_URI = "https://oauth2.googleapis.com/token"


class AuthFailed(Exception):
    """Raised when credentials are malformed or the token exchange is rejected."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


@dataclass
class AuthorizedClient:
    """Token bearing credentials ready to be handed to a remote store."""

    credentials: service_account.Credentials
    client_email: str
    scopes: List[str] = field(default_factory=lambda: [DRIVE_SCOPE])

    @property
    def valid(self) -> bool:
        return bool(self.credentials.valid)


class ServiceAccountAuthorizer:
    """Exchanges service account credentials for an access token."""

    def __init__(
        self,
        scopes: Optional[List[str]] = None,
        timeout: float = 30.0,
        cache_tokens: bool = False
    ):
        """Initialize the authorizer.

        Args:
            scopes: OAuth scopes to request; read/write Drive access by default
            timeout: Seconds to wait for the token exchange
            cache_tokens: Reuse a still valid token for the same identity
        """
        self.scopes = scopes or [DRIVE_SCOPE]
        self.timeout = timeout
        self.cache_tokens = cache_tokens
        self.logger = get_logger(self.__class__.__name__)
        self._cached: Optional[AuthorizedClient] = None

    @log_async_execution_time
    async def authorize(self, credentials: ServiceAccountCredentials) -> AuthorizedClient:
        """Obtain an authorized client for the given service account.

        Raises:
            AuthFailed: If the key cannot be parsed or the exchange fails
        """
        cached = self._cached
        if (
            self.cache_tokens
            and cached is not None
            and cached.client_email == credentials.client_email
            and cached.valid
        ):
            self.logger.debug("Reusing cached access token", client_email=credentials.client_email)
            return cached

        google_credentials = self._build_credentials(credentials)

        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(
                loop.run_in_executor(None, google_credentials.refresh, Request()),
                timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            self.logger.error("Token exchange timed out", client_email=credentials.client_email)
            raise AuthFailed(f"Token exchange timed out after {self.timeout}s", e)
        except google.auth.exceptions.RefreshError as e:
            self.logger.error(
                "Token exchange rejected",
                client_email=credentials.client_email,
                error=str(e)
            )
            raise AuthFailed(f"Token exchange rejected: {e}", e)
        except google.auth.exceptions.TransportError as e:
            self.logger.error(
                "Token endpoint unreachable",
                client_email=credentials.client_email,
                error=str(e)
            )
            raise AuthFailed(f"Token endpoint unreachable: {e}", e)
        except ValueError as e:
            # Raised while signing the assertion with a key that parsed but is unusable
            self.logger.error("Invalid private key", client_email=credentials.client_email)
            raise AuthFailed(f"Invalid private key: {e}", e)

        client = AuthorizedClient(
            credentials=google_credentials,
            client_email=credentials.client_email,
            scopes=list(self.scopes)
        )

        if self.cache_tokens:
            self._cached = client

        self.logger.info(
            "Service account authorized",
            client_email=credentials.client_email,
            expiry=google_credentials.expiry.isoformat() if google_credentials.expiry else None
        )
        return client

    def invalidate(self):
        """Forget any cached token."""
        self._cached = None

    def _build_credentials(self, credentials: ServiceAccountCredentials) -> service_account.Credentials:
        info = {
            "type": "service_account",
            "client_email": credentials.client_email,
            "private_key": normalize_private_key(credentials.private_key),
            "token_uri": TOKEN_URI,
        }

        try:
            return service_account.Credentials.from_service_account_info(info, scopes=self.scopes)
        except (ValueError, TypeError) as e:
            self.logger.error(
                "Malformed service account credentials",
                client_email=credentials.client_email,
                error=type(e).__name__
            )
            raise AuthFailed(f"Malformed service account credentials: {e}", e)


def normalize_private_key(private_key: str) -> str:
    """Turn a key pasted with literal ``\\n`` sequences back into PEM."""
    key = private_key.strip()
    if "\\n" in key and "\n" not in key:
        key = key.replace("\\n", "\n")
    if not key.endswith("\n"):
        key += "\n"
    return key
