"""Password hashing and signed session tokens."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from backend.config import Settings
from backend.errors import ExpiredTokenError, InvalidTokenError

logger = logging.getLogger(__name__)


class PasswordHasher:
    """bcrypt hashing with a random salt embedded in every hash."""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds
        self._context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, plain_password: str, password_hash: str) -> bool:
        """Constant-time check of ``plain_password`` against a stored hash.

        A hash passlib cannot identify counts as a mismatch.
        """
        try:
            return self._context.verify(plain_password, password_hash)
        except ValueError:
            logger.warning("Stored password hash has an unrecognized format")
            return False


class TokenService:
    """Issues and verifies HS256 JWTs carrying the user id in ``sub``."""

    def __init__(self, secret_key: str, algorithm: str = "HS256", expire_minutes: int = 60 * 24 * 7):
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expires_delta = timedelta(minutes=expire_minutes)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        return cls(
            secret_key=settings.secret_key,
            algorithm=settings.algorithm,
            expire_minutes=settings.access_token_expire_minutes,
        )

    def issue(self, user_id: str, now: Optional[datetime] = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        to_encode = {
            "sub": str(user_id),
            "iat": issued_at,
            "exp": issued_at + self.expires_delta,
        }
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> str:
        """Return the user id in ``token``.

        Raises:
            ExpiredTokenError: signature is good but ``exp`` has passed.
            InvalidTokenError: bad signature, malformed token or missing subject.
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError as e:
            raise ExpiredTokenError("Token has expired") from e
        except JWTError as e:
            raise InvalidTokenError("Invalid token") from e

        user_id = payload.get("sub")
        if not user_id:
            raise InvalidTokenError("Token carries no subject")
        return user_id
