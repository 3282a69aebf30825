"""Resolve which database user the engine connects as."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import google.auth
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import AuthorizedSession
import requests

from .config import EngineConfig
from .errors import IdentityError
from .models import ResolvedIdentity

LOG = logging.getLogger(__name__)

USERINFO_SCOPE = "https://www.googleapis.com/auth/userinfo.email"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


@runtime_checkable
class EmailRetriever(Protocol):
    """Callable returning the IAM principal email for the current environment."""

    def __call__(self) -> str:
        """Return the email or raise if it cannot be determined."""


def get_service_account_email(timeout: float = 10.0) -> str:
    """Look up the email of the Application Default Credentials principal."""

    try:
        credentials, _ = google.auth.default(scopes=[USERINFO_SCOPE])
    except GoogleAuthError as exc:
        raise IdentityError(f"unable to get default credentials: {exc}") from exc
    if credentials is None:
        raise IdentityError("missing or invalid credentials")

    session = AuthorizedSession(credentials)
    try:
        response = session.get(USERINFO_URL, timeout=timeout)
        response.raise_for_status()
        payload = response.json()
    except (GoogleAuthError, requests.RequestException, ValueError) as exc:
        raise IdentityError(f"failed to get user info: {exc}") from exc
    finally:
        session.close()

    email = payload.get("email") if isinstance(payload, dict) else None
    if not email:
        raise IdentityError("failed to get user info: response has no email")
    return str(email)


def resolve_identity(config: EngineConfig) -> ResolvedIdentity:
    """Pick the username and auth mode for ``config``.

    Rules are checked in order and the first match wins:

    1. user and password both set: static credentials.
    2. an IAM account email is set: IAM auth as that principal.
    3. nothing set at all: IAM auth as the principal returned by the
       email retriever (one lookup, may hit the network).
    4. anything else (only one of user/password) is an error.
    """

    if config.user and config.password:
        return ResolvedIdentity(username=config.user, uses_iam=False)
    if config.iam_account_email:
        return ResolvedIdentity(username=config.iam_account_email, uses_iam=True)
    if not config.user and not config.password and not config.iam_account_email:
        retriever: EmailRetriever = config.email_retriever or get_service_account_email
        try:
            email = retriever()
        except Exception as exc:
            raise IdentityError(f"unable to retrieve service account email: {exc}") from exc
        if not email:
            raise IdentityError("unable to retrieve service account email: no email returned")
        LOG.debug("Retrieved IAM principal", extra={"user": email})
        return ResolvedIdentity(username=email, uses_iam=True)

    raise IdentityError("unable to retrieve a valid username")


__all__ = [
    "EmailRetriever",
    "USERINFO_SCOPE",
    "USERINFO_URL",
    "get_service_account_email",
    "resolve_identity",
]
