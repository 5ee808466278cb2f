"""Authentication module for drivemirror."""

from .authorizer import AuthFailed, AuthorizedClient, ServiceAccountAuthorizer, DRIVE_SCOPE

__all__ = ["AuthFailed", "AuthorizedClient", "ServiceAccountAuthorizer", "DRIVE_SCOPE"]
