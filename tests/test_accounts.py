"""Registration, login, profile and password management."""

import pytest
from bson import ObjectId

from accounts import check_password, public
from database import USERS
from errors import Conflict, InvalidArgument, NotFound, Unauthenticated
from schemas import Address, ProfileUpdate, RegisterRequest


class TestRegister:
    def test_stores_hashed_password(self, make_user):
        user = make_user(password="secret123")

        assert user["password"] != "secret123"
        assert check_password("secret123", user["password"])
        assert user["role"] == "user"
        assert user["is_active"] is True

    def test_email_is_normalised(self, make_user):
        user = make_user(email="Mixed.Case@Storefront.dev")

        assert user["email"] == "mixed.case@storefront.dev"

    def test_duplicate_email(self, accounts, make_user):
        make_user(email="taken@storefront.dev")

        with pytest.raises(Conflict):
            accounts.register(
                RegisterRequest(first_name="A", last_name="B", email="TAKEN@storefront.dev", password="secret123")
            )

    def test_public_strips_password(self, make_user):
        user = public(make_user())

        assert "password" not in user
        assert "_id" not in user
        assert user["id"]


class TestLogin:
    def test_login(self, accounts, store, make_user):
        make_user(email="ada@storefront.dev", password="secret123")

        user = accounts.login("ADA@storefront.dev", "secret123")

        assert user["email"] == "ada@storefront.dev"
        assert store[USERS].find_one({"_id": user["_id"]})["last_login"] is not None

    def test_wrong_password(self, accounts, make_user):
        make_user(email="ada@storefront.dev", password="secret123")

        with pytest.raises(Unauthenticated) as exc:
            accounts.login("ada@storefront.dev", "wrong-one")

        assert exc.value.message == "Invalid credentials"

    def test_unknown_email(self, accounts):
        with pytest.raises(Unauthenticated):
            accounts.login("ghost@storefront.dev", "secret123")

    def test_deactivated(self, accounts, make_user):
        user = make_user(email="ada@storefront.dev", password="secret123")
        accounts.deactivate(str(user["_id"]))

        with pytest.raises(Unauthenticated) as exc:
            accounts.login("ada@storefront.dev", "secret123")

        assert exc.value.message == "Account is deactivated."


class TestProfile:
    def test_update_profile(self, accounts, make_user):
        user = make_user()

        updated = accounts.update_profile(
            str(user["_id"]),
            ProfileUpdate(phone="555-0100", address=Address(street="1 Main St", city="Springfield", zip_code="12345")),
        )

        assert updated["phone"] == "555-0100"
        assert updated["address"]["city"] == "Springfield"
        assert updated["first_name"] == user["first_name"]

    def test_role_and_email_cannot_be_changed(self, accounts, make_user):
        user = make_user()

        updated = accounts.update_profile(
            str(user["_id"]), ProfileUpdate.model_validate({"firstName": "New", "role": "admin", "email": "x@y.dev"})
        )

        assert updated["first_name"] == "New"
        assert updated["role"] == "user"
        assert updated["email"] == user["email"]

    def test_get_unknown(self, accounts):
        with pytest.raises(NotFound):
            accounts.get(str(ObjectId()))

    def test_list_with_search(self, accounts, make_user):
        make_user(first_name="Grace")
        make_user(first_name="Alan")

        result = accounts.list(search="grace")

        assert [u["first_name"] for u in result["users"]] == ["Grace"]
        assert "password" not in result["users"][0]
        assert result["pagination"]["total_items"] == 1


class TestPassword:
    def test_change_password(self, accounts, make_user):
        user = make_user(email="ada@storefront.dev", password="secret123")

        accounts.change_password(str(user["_id"]), "secret123", "newsecret")

        assert accounts.login("ada@storefront.dev", "newsecret")
        with pytest.raises(Unauthenticated):
            accounts.login("ada@storefront.dev", "secret123")

    def test_wrong_current_password(self, accounts, make_user):
        user = make_user(password="secret123")

        with pytest.raises(InvalidArgument) as exc:
            accounts.change_password(str(user["_id"]), "nope", "newsecret")

        assert exc.value.message == "Current password is incorrect"

    def test_new_password_too_short(self, accounts, make_user):
        user = make_user(password="secret123")

        with pytest.raises(InvalidArgument):
            accounts.change_password(str(user["_id"]), "secret123", "abc")

    def test_missing_values(self, accounts, make_user):
        user = make_user()

        with pytest.raises(InvalidArgument):
            accounts.change_password(str(user["_id"]), "", "newsecret")
