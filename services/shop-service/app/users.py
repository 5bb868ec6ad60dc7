import logging
import uuid

import bcrypt

from shared.security import make_access_token

from .domain import User
from .errors import InvalidCredentials, UserAlreadyExists, UserNotFound
from .repositories import UserRepository

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes (and newer releases refuse longer input)
BCRYPT_MAX_BYTES = 72


def _pw_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_pw_bytes(password), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_pw_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


class UserService:
    def __init__(self, users: UserRepository, publish=None):
        self._users = users
        self._publish = publish

    def register(
        self,
        email: str,
        password: str,
        firstname: str,
        lastname: str,
        age: int,
        is_married: bool = False,
    ) -> User:
        email = email.strip().lower()
        try:
            self._users.find_by_email(email)
        except UserNotFound:
            pass
        else:
            raise UserAlreadyExists(email)

        user = User(
            id=uuid.uuid4(),
            email=email,
            password_hash=hash_password(password),
            firstname=firstname,
            lastname=lastname,
            age=age,
            is_married=is_married,
        )
        # the unique index still guards against a concurrent registration
        self._users.create(user)
        logger.info("user registered user_id=%s", user.id)

        if self._publish is not None:
            self._publish("user.registered", {"user_id": str(user.id), "email": user.email}, safe=True)
        return user

    def login(self, email: str, password: str) -> str:
        try:
            user = self._users.find_by_email(email.strip().lower())
        except UserNotFound:
            raise InvalidCredentials() from None

        if not check_password(password, user.password_hash):
            raise InvalidCredentials()

        return make_access_token(user.id, user.email)

    def get_user(self, user_id: uuid.UUID) -> User:
        return self._users.find_by_id(user_id)
