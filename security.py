from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from settings import Settings

BCRYPT_MAX_BYTES = 72


def _truncate_password(password: str) -> str:
    if password is None:
        return ""
    pb = password.encode("utf-8")[:BCRYPT_MAX_BYTES]
    return pb.decode("utf-8", errors="ignore")


class PasswordHasher:
    def __init__(self, rounds: int = 10):
        self.pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash(self, password: str) -> str:
        return self.pwd_context.hash(_truncate_password(password))

    def verify(self, plain: str, hashed: str) -> bool:
        if not hashed:
            return False
        try:
            return self.pwd_context.verify(_truncate_password(plain), hashed)
        except ValueError:
            # Stored value is not a recognisable hash
            return False


class TokenManager:
    def __init__(self, secret: str, algorithm: str = "HS256", expire_days: int = 7):
        self.secret = secret
        self.algorithm = algorithm
        self.expire_days = expire_days

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenManager":
        return cls(settings.JWT_SECRET, settings.JWT_ALGORITHM, settings.JWT_EXPIRE_DAYS)

    def create_token(self, user_id: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "iat": now,
            "exp": now + timedelta(days=self.expire_days),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Optional[dict]:
        """
        Decode and validate a token.

        Returns the payload, or None if the signature is wrong or the token expired.
        """
        try:
            return jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError:
            return None
