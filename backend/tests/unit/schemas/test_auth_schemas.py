"""
Unit Tests for Auth Schemas
Tests for: validation, aliases, response serialization
"""
import pytest
from pydantic import ValidationError
from datetime import datetime
from uuid import uuid4

from app.schemas.auth import (
    UserRegister,
    UserLogin,
    ResetPasswordRequest,
    UserResponse,
)
from app.schemas.project import ProjectUpdate


def registration(**overrides) -> dict:
    data = {
        "username": "asha",
        "email": "asha@example.com",
        "password": "secret",
        "mobileNumber": "9876543210",
        "college": "Government Engineering College",
        "branch": "Computer Science",
        "rollNumber": "21CS001",
    }
    data.update(overrides)
    return data


class TestUserRegister:
    """Test UserRegister schema"""

    def test_camel_case_keys(self):
        user = UserRegister(**registration())

        assert user.mobile_number == "9876543210"
        assert user.roll_number == "21CS001"

    def test_snake_case_keys(self):
        data = registration()
        data["mobile_number"] = data.pop("mobileNumber")
        data["roll_number"] = data.pop("rollNumber")

        assert UserRegister(**data).roll_number == "21CS001"

    def test_strips_whitespace(self):
        user = UserRegister(**registration(username="  asha  ", rollNumber=" 21CS001 "))

        assert user.username == "asha"
        assert user.roll_number == "21CS001"

    @pytest.mark.parametrize("mobile", ["987654321", "98765432100", "98765-4321", ""])
    def test_mobile_must_be_ten_digits(self, mobile):
        with pytest.raises(ValidationError):
            UserRegister(**registration(mobileNumber=mobile))

    def test_invalid_email(self):
        with pytest.raises(ValidationError):
            UserRegister(**registration(email="not-an-email"))

    @pytest.mark.parametrize("field", ["username", "password", "college", "branch", "rollNumber"])
    def test_required_fields_not_blank(self, field):
        with pytest.raises(ValidationError):
            UserRegister(**registration(**{field: ""}))


class TestOtherRequests:

    def test_login_requires_both(self):
        with pytest.raises(ValidationError):
            UserLogin(username="asha")

    def test_login_and_reset_strip_username(self):
        assert UserLogin(username=" asha ", password="secret").username == "asha"
        assert ResetPasswordRequest(username="asha ", token="abc", newPassword="fresh").username == "asha"

    def test_reset_password_alias(self):
        request = ResetPasswordRequest(username="asha", token="abc", newPassword="fresh")

        assert request.new_password == "fresh"

    def test_project_update_tracks_sent_fields(self):
        assert ProjectUpdate().model_fields_set == set()
        assert ProjectUpdate(description=None).model_fields_set == {"description"}


class TestUserResponse:

    def test_from_orm_object_hides_secrets(self):
        class Row:
            id = str(uuid4())
            username = "asha"
            email = "asha@example.com"
            college = "GEC"
            branch = "CSE"
            roll_number = "21CS001"
            mobile_number = "9876543210"
            created_at = datetime.utcnow()
            updated_at = None
            hashed_password = "$2b$04$secret"
            reset_token_hash = "$2b$04$other"

        dumped = UserResponse.model_validate(Row()).model_dump()

        assert dumped["username"] == "asha"
        assert "hashed_password" not in dumped
        assert "reset_token_hash" not in dumped
