import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from fastapi import Request

from .errors import EmailTaken, Unauthorized

logger = logging.getLogger(__name__)

PBKDF2_ROUNDS = 200_000


def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ROUNDS).hex()
    return f"{salt}${digest}"


def verify_password(password: str, stored_hash: str) -> bool:
    try:
        salt, expected = stored_hash.split("$", 1)
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ROUNDS).hex()
    return secrets.compare_digest(digest, expected)


@dataclass(frozen=True)
class Principal:
    """The authenticated caller as issued by the identity provider."""

    user_id: str
    email: str = ""
    name: str = ""
    image: str = ""


class IdentityProvider:
    """Credential registry standing in for the external auth provider.

    It only issues principals. App-side ``users`` rows are provisioned lazily by
    the persistence layer the first time a principal writes something.
    """

    def __init__(self) -> None:
        self._accounts: dict[str, dict[str, Any]] = {}

    def register(self, email: str, password: str, name: str | None = None) -> Principal:
        key = email.strip().lower()
        if key in self._accounts:
            raise EmailTaken()
        principal = Principal(user_id=str(uuid4()), email=key, name=name or "")
        self._accounts[key] = {"principal": principal, "password_hash": hash_password(password)}
        return principal

    def authenticate(self, email: str, password: str) -> Principal | None:
        account = self._accounts.get(email.strip().lower())
        if account is None or not verify_password(password, account["password_hash"]):
            return None
        return account["principal"]


class SessionStore:
    def __init__(self, timeout_minutes: int | None = None) -> None:
        self.timeout_minutes = timeout_minutes
        self._sessions: dict[str, dict[str, Any]] = {}

    def create(self, principal: Principal) -> str:
        token = secrets.token_urlsafe(32)
        self._sessions[token] = {"principal": principal, "last_seen": datetime.now(timezone.utc)}
        logger.info("session opened for user %s", principal.user_id)
        return token

    def resolve(self, token: str | None) -> Principal | None:
        if not token:
            return None
        session = self._sessions.get(token)
        if session is None:
            return None
        now = datetime.now(timezone.utc)
        if self.timeout_minutes and (now - session["last_seen"]) > timedelta(minutes=self.timeout_minutes):
            # A concurrent request may have expired the same token already.
            self._sessions.pop(token, None)
            return None
        session["last_seen"] = now
        return session["principal"]

    def revoke(self, token: str | None) -> None:
        session = self._sessions.pop(token, None) if token else None
        if session is not None:
            logger.info("session closed for user %s", session["principal"].user_id)


def extract_token(request: Request) -> str | None:
    auth = request.headers.get("Authorization")
    if auth:
        parts = auth.split(" ", 1)
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1].strip()
    return request.cookies.get(request.app.state.settings.session_cookie_name)


def resolve(request: Request) -> Principal | None:
    return request.app.state.sessions.resolve(extract_token(request))


def require_principal(request: Request) -> Principal:
    principal = resolve(request)
    if principal is None:
        raise Unauthorized()
    return principal
