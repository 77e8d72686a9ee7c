"""
Registration, login and bearer-token authentication.
"""
import logging
from typing import Optional, Tuple

from bson import ObjectId
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.errors import DuplicateKeyError

from database import DocumentStore
from errors import AuthError, ConflictError, PersistenceError, ValidationError, to_http_exception
from schemas import User
from security import PasswordHasher, TokenManager

logger = logging.getLogger(__name__)

USERS = User.collection_name()


class AuthService:
    def __init__(self, store: DocumentStore, hasher: PasswordHasher, tokens: TokenManager):
        self.store = store
        self.hasher = hasher
        self.tokens = tokens

    def get_user(self, user_id: ObjectId) -> Optional[User]:
        document = self.store.get_document(USERS, {"_id": user_id})
        return User.from_document(document) if document else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        document = self.store.get_document(USERS, {"email": email})
        return User.from_document(document) if document else None

    def register(self, name: str, email: str, password: str) -> Tuple[str, User]:
        if not name or not email or not password:
            raise ValidationError("Missing fields")

        if self.get_user_by_email(email):
            raise ConflictError("Email already registered")

        user = User(name=name, email=email, password=self.hasher.hash(password))
        try:
            user.id = self.store.create_document(USERS, user.to_document())
        except DuplicateKeyError:
            # Lost a race with a concurrent registration for the same email
            raise ConflictError("Email already registered")

        logger.info(f"Registered user {user.id}")
        return self.tokens.create_token(str(user.id)), user

    def login(self, email: str, password: str) -> Tuple[str, User]:
        if not email or not password:
            raise ValidationError("Missing fields")

        user = self.get_user_by_email(email)
        if not user or not self.hasher.verify(password, user.password):
            logger.info(f"Failed login for {email}")
            raise AuthError("Invalid credentials", status_code=400)

        return self.tokens.create_token(str(user.id)), user

    def authenticate(self, token: Optional[str]) -> User:
        if not token:
            raise AuthError("No token")

        payload = self.tokens.verify_token(token)
        if not payload:
            raise AuthError("Invalid or expired token")

        user_id = payload.get("sub")
        if not user_id or not ObjectId.is_valid(user_id):
            raise AuthError("Invalid token payload")

        user = self.get_user(ObjectId(user_id))
        if not user:
            raise AuthError("Invalid token (user not found)")
        return user


# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    """
    Dependency resolving the caller from the Authorization header.
    Raises 401 if the header is missing or the token does not resolve to a user.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return auth_service.authenticate(credentials.credentials)
    except PersistenceError as e:
        logger.error(f"Error resolving token user: {e}")
        raise to_http_exception(e)
    except AuthError as e:
        raise to_http_exception(e)
