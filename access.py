"""Access gate.

Two kinds of actors exist: anonymous requesters, who may submit and list
requests, and dispatchers, who may additionally change status and delete any
request. Dispatcher authority lives in a ``DispatcherSession`` with an
absolute expiry; on the wire it travels as a signed token carrying that
expiry so the server can verify it without keeping state.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Protocol

from itsdangerous import BadSignature, URLSafeTimedSerializer
from passlib.context import CryptContext

import config
from errors import AuthFailed, Unauthorized
from models import utcnow

logger = logging.getLogger(__name__)

SESSION_SALT = "dispatcher-session"
REQUESTER_SALT = "requester-token"

serializer = URLSafeTimedSerializer(config.SECRET_KEY)

pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


class CredentialStore(Protocol):
    def validate(self, username: str, password: str) -> Optional[str]:
        """Return the actor name for a valid pair, otherwise None."""
        ...


class StaticCredentialStore:
    """A single dispatcher account, configured through the environment."""

    def __init__(self, username: str, password_hash: str):
        self.username = username
        self.password_hash = password_hash

    @classmethod
    def from_config(cls) -> "StaticCredentialStore":
        password_hash = config.DISPATCHER_PASSWORD_HASH or hash_password(
            config.DISPATCHER_PASSWORD
        )
        return cls(config.DISPATCHER_USERNAME, password_hash)

    def validate(self, username: str, password: str) -> Optional[str]:
        if username != self.username:
            return None
        if not verify_password(password, self.password_hash):
            return None
        return username


@dataclass
class DispatcherSession:
    authorized: bool = False
    expires_at: Optional[datetime] = None
    actor: Optional[str] = None
    # Signed form of this session, as handed out by the login endpoint.
    token: Optional[str] = None

    def clear(self) -> None:
        self.authorized = False
        self.expires_at = None
        self.actor = None
        self.token = None


class SessionState(str, Enum):
    VALID = "valid"
    EXPIRED = "expired"
    ABSENT = "absent"


def session_ttl() -> timedelta:
    return timedelta(hours=config.SESSION_TTL_HOURS)


def authorize(
    credentials: CredentialStore,
    username: str,
    password: str,
    now: Optional[datetime] = None,
    ttl: Optional[timedelta] = None,
) -> DispatcherSession:
    actor = credentials.validate(username, password)
    if actor is None:
        logger.info("Rejected dispatcher login for %r", username)
        raise AuthFailed()
    now = now or utcnow()
    session = DispatcherSession(
        authorized=True,
        expires_at=now + (ttl or session_ttl()),
        actor=actor,
    )
    logger.info("Dispatcher %r logged in until %s", actor, session.expires_at.isoformat())
    return session


def check_session(
    session: Optional[DispatcherSession],
    now: Optional[datetime] = None,
) -> SessionState:
    """Classify a session. An expired session is cleared as a side effect."""
    if session is None or not session.authorized or session.expires_at is None:
        return SessionState.ABSENT
    now = now or utcnow()
    if now < session.expires_at:
        return SessionState.VALID
    logger.info("Dispatcher session for %r expired at %s", session.actor, session.expires_at)
    session.clear()
    return SessionState.EXPIRED


def require_authority(
    session: Optional[DispatcherSession],
    operation: str,
    now: Optional[datetime] = None,
) -> DispatcherSession:
    state = check_session(session, now)
    if state is not SessionState.VALID:
        logger.info("Blocked %s: dispatcher session %s", operation, state.value)
        raise Unauthorized(
            detail=f"Dispatcher login required to {operation}",
            clear_session=state is SessionState.EXPIRED,
            redirect=config.LOGIN_URL,
        )
    return session


def issue_token(session: DispatcherSession) -> str:
    return serializer.dumps(
        {"actor": session.actor, "exp": session.expires_at.timestamp()},
        salt=SESSION_SALT,
    )


def read_token(token: Optional[str]) -> Optional[DispatcherSession]:
    """Decode a session token. Returns None when absent or tampered with.

    Expired tokens still decode; ``check_session`` decides on expiry.
    """
    if not token:
        return None
    try:
        data = serializer.loads(token, salt=SESSION_SALT)
    except BadSignature:
        logger.warning("Ignoring session token with a bad signature")
        return None
    return DispatcherSession(
        authorized=True,
        expires_at=datetime.fromtimestamp(data["exp"], tz=timezone.utc),
        actor=data.get("actor"),
        token=token,
    )


def issue_requester_token(request_id: int) -> str:
    return serializer.dumps(request_id, salt=REQUESTER_SALT)


def verify_requester_token(token: Optional[str], request_id: int) -> bool:
    if not token:
        return False
    try:
        return serializer.loads(token, salt=REQUESTER_SALT) == request_id
    except BadSignature:
        return False
