import uuid

import pytest
from jose import jwt

from app.domain import User
from app.errors import InvalidCredentials, UserAlreadyExists, UserNotFound
from app.users import UserService, check_password, hash_password
from shared.security import decode_access_token


@pytest.fixture
def users(user_repo):
    return UserService(user_repo)


def test_register_stores_hashed_password(users, user_repo):
    user = users.register("John@Example.com", "password123", "John", "Doe", 25, False)

    stored = user_repo.find_by_email("john@example.com")
    assert stored.id == user.id
    assert stored.password_hash != "password123"
    assert check_password("password123", stored.password_hash)


def test_register_duplicate_email(users):
    users.register("exists@example.com", "password123", "John", "Doe", 25)
    with pytest.raises(UserAlreadyExists):
        users.register("exists@example.com", "otherpass99", "Jane", "Doe", 30)


def test_store_rejects_duplicate_email_directly(user_repo):
    first = User(id=uuid.uuid4(), email="dup@example.com", password_hash="h", firstname="a", lastname="b", age=20)
    second = User(id=uuid.uuid4(), email="dup@example.com", password_hash="h", firstname="c", lastname="d", age=20)
    user_repo.create(first)
    with pytest.raises(UserAlreadyExists):
        user_repo.create(second)


def test_login_returns_token_for_user(users):
    user = users.register("login@example.com", "password123", "John", "Doe", 25)

    token = users.login("login@example.com", "password123")

    claims = decode_access_token(token)
    assert claims["sub"] == str(user.id)
    assert claims["email"] == "login@example.com"
    assert claims["exp"] > claims["iat"]
    assert jwt.get_unverified_header(token)["alg"] == "HS256"


def test_login_wrong_password(users):
    users.register("login@example.com", "password123", "John", "Doe", 25)
    with pytest.raises(InvalidCredentials):
        users.login("login@example.com", "wrong-password")


def test_login_unknown_email(users):
    with pytest.raises(InvalidCredentials):
        users.login("nobody@example.com", "password123")


def test_get_user(users):
    user = users.register("me@example.com", "password123", "John", "Doe", 25)
    assert users.get_user(user.id).email == "me@example.com"
    with pytest.raises(UserNotFound):
        users.get_user(uuid.uuid4())


def test_registration_event_published(user_repo):
    sent = []
    service = UserService(user_repo, publish=lambda t, p, safe=False: sent.append((t, p, safe)))

    user = service.register("events@example.com", "password123", "John", "Doe", 25)

    assert sent == [("user.registered", {"user_id": str(user.id), "email": "events@example.com"}, True)]


def test_check_password_with_garbage_hash():
    assert not check_password("password123", "not-a-bcrypt-hash")
    assert check_password("s3cret-pass", hash_password("s3cret-pass"))
