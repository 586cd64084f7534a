from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext


class PasswordHasher:
    def __init__(self, rounds: int = 10):
        self.pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash_password(self, password: str) -> str:
        return self.pwd_context.hash(password)

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        return self.pwd_context.verify(plain_password, hashed_password)

    def dummy_verify(self) -> None:
        """Spend one hash round without a stored hash (unknown usernames)."""
        self.pwd_context.dummy_verify()


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    username: str


class TokenService:
    """Issues and verifies the signed session token (HS256 JWT)."""

    def __init__(self, secret_key: str, algorithm: str = "HS256", ttl: timedelta = timedelta(hours=24)):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.ttl = ttl

    def issue(self, user, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        claims = {
            "user_id": user.id,
            "username": user.username,
            "iat": now,
            "exp": now + self.ttl,
        }
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: Optional[str]) -> Optional[TokenClaims]:
        """
        Return the claims of a valid token, otherwise None.

        Expired, malformed and wrongly signed tokens are not told apart.
        """
        if not token:
            return None
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError:
            return None
        user_id = payload.get("user_id")
        username = payload.get("username")
        if not isinstance(user_id, int) or not isinstance(username, str):
            return None
        return TokenClaims(user_id=user_id, username=username)
