from datetime import timedelta

import jwt
import pytest
from bson import ObjectId

from auth import ALGORITHM, AccessControl
from database import utcnow
from errors import Forbidden, Unauthenticated


def test_issued_token_resolves_to_user(access, make_user):
    user = make_user()

    token = access.issue(user)

    assert access.authenticate(token)["_id"] == user["_id"]


def test_token_carries_id_and_expiry(access, settings, make_user):
    user = make_user()

    claims = jwt.decode(access.issue(user), settings.jwt_secret, algorithms=[ALGORITHM])

    assert claims["id"] == str(user["_id"])
    assert claims["exp"] > utcnow().timestamp()


def test_missing_token(access):
    with pytest.raises(Unauthenticated) as exc:
        access.authenticate("")

    assert exc.value.message == "Access denied. No token provided."


def test_garbage_token(access):
    with pytest.raises(Unauthenticated) as exc:
        access.authenticate("not.a.jwt")

    assert exc.value.message == "Token is invalid."


def test_token_signed_with_other_secret(store, access, make_user):
    forged = AccessControl(store, "another-secret").issue(make_user())

    with pytest.raises(Unauthenticated):
        access.authenticate(forged)


def test_expired_token(access, settings, make_user):
    user = make_user()
    expired = jwt.encode(
        {"id": str(user["_id"]), "exp": utcnow() - timedelta(seconds=1)}, settings.jwt_secret, algorithm=ALGORITHM
    )

    with pytest.raises(Unauthenticated):
        access.authenticate(expired)


def test_token_for_unknown_user(access):
    token = access.issue({"_id": ObjectId()})

    with pytest.raises(Unauthenticated) as exc:
        access.authenticate(token)

    assert exc.value.message == "Token is invalid. User not found."


def test_deactivated_user(access, accounts, make_user):
    user = make_user()
    token = access.issue(user)
    accounts.deactivate(str(user["_id"]))

    with pytest.raises(Unauthenticated) as exc:
        access.authenticate(token)

    assert exc.value.message == "Account is deactivated."


def test_authorize():
    admin = {"_id": ObjectId(), "role": "admin"}

    assert AccessControl.authorize(admin, "admin") is admin
    with pytest.raises(Forbidden) as exc:
        AccessControl.authorize({"_id": ObjectId(), "role": "user"}, "admin")

    assert exc.value.message == "Role user is not authorized to access this route"


def test_token_without_expiry(access, settings, make_user):
    user = make_user()
    forever = jwt.encode({"id": str(user["_id"])}, settings.jwt_secret, algorithm=ALGORITHM)

    with pytest.raises(Unauthenticated) as exc:
        access.authenticate(forever)

    assert exc.value.message == "Token is invalid."


def test_token_without_user_id(access, settings):
    anonymous = jwt.encode({"exp": utcnow() + timedelta(days=1)}, settings.jwt_secret, algorithm=ALGORITHM)

    with pytest.raises(Unauthenticated):
        access.authenticate(anonymous)
