import logging
from typing import Optional

from sqlalchemy.orm import Session

import errors
from auth_utils import PasswordHasher
from models import User

logger = logging.getLogger(__name__)


class CredentialStore:
    """Owns the ``users`` table: registration, lookups, password checks."""

    def __init__(self, db: Session, hasher: Optional[PasswordHasher] = None):
        self.db = db
        self.hasher = hasher

    def create_user(self, username: str, email: str, password: str) -> User:
        """
        Create a user with a bcrypt-hashed password.

        Duplicates are detected by lookup before the insert. Two concurrent
        registrations for the same name can both pass the lookup; the second
        insert then fails on the unique constraint and surfaces as an
        internal error.

        Raises:
            errors.Conflict: username or email already taken.
        """
        if self.get_user_by_username(username):
            raise errors.Conflict("Username already exists")
        if self.get_user_by_email(email):
            raise errors.Conflict("Email already exists")

        user = User(username=username, email=email, password_hash=self.hasher.hash_password(password))
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info("Registered user id=%s username=%s", user.id, user.username)
        return user

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self.db.query(User).filter(User.username == username).first()

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email).first()

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        return self.db.get(User, user_id)

    def verify_password(self, username: str, password: str) -> Optional[User]:
        # Unknown user and wrong password both return None.
        user = self.get_user_by_username(username)
        if user is None:
            self.hasher.dummy_verify()
            return None
        if not self.hasher.verify_password(password, user.password_hash):
            return None
        return user
