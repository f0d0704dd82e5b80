import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError
from sqlalchemy.orm import Session

import auth
import crud
import models
import schemas
from settings import Settings

MOCK_SETTINGS = Settings(
    auth_provider_url="https://auth.test",
    auth_provider_anon_key="anon-key",
    app_base_url="http://testserver",
)

SIGNUP = {
    "full_name": "Maria Silva",
    "email": "maria@example.com",
    "password": "secret1",
    "confirm_password": "secret1",
}


def test_signup_requires_matching_passwords():
    with pytest.raises(ValidationError, match="Passwords do not match"):
        schemas.SignupRequest(**{**SIGNUP, "confirm_password": "other12"})


@pytest.mark.parametrize(
    "field, value",
    [("full_name", "M"), ("full_name", "x" * 101), ("email", "not-an-email"), ("password", "12345")],
)
def test_signup_field_validation(field, value):
    data = {**SIGNUP, field: value}
    if field == "password":
        data["confirm_password"] = value
    with pytest.raises(ValidationError):
        schemas.SignupRequest(**data)


def test_local_mode_creates_dev_user(test_client: TestClient, db_session: Session):
    response = test_client.get("/users/me")

    assert response.status_code == 200
    assert response.json()["user_id"] == auth.LOCAL_USER_ID
    role = crud.get_user_role(db_session, auth.LOCAL_USER_ID)
    assert role.role == models.AppRole.candidate


def test_ensure_user_is_idempotent(db_session: Session):
    crud.ensure_user(db_session, "u1", "u1@example.com", full_name="First Name")
    db_session.commit()
    crud.set_user_role(db_session, "u1", models.AppRole.recruiter)
    crud.ensure_user(db_session, "u1", "u1@example.com", full_name="Other Name")
    db_session.commit()

    assert db_session.query(models.Profile).filter_by(user_id="u1").count() == 1
    assert crud.get_profile_by_user_id(db_session, "u1").full_name == "First Name"
    assert crud.get_user_role(db_session, "u1").role == models.AppRole.recruiter


@pytest.mark.asyncio
async def test_sign_up_posts_to_provider():
    sent = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(request)
        return httpx.Response(
            200,
            json={"access_token": "tok", "expires_in": 3600, "user": {"id": "user-1", "email": "maria@example.com"}},
        )

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    session = await auth.sign_up(schemas.SignupRequest(**SIGNUP), MOCK_SETTINGS, client=client)

    assert session.user_id == "user-1"
    assert session.access_token == "tok"
    assert str(sent[0].url) == "https://auth.test/auth/v1/signup"
    assert sent[0].headers["apikey"] == "anon-key"
    assert json.loads(sent[0].content)["data"] == {"full_name": "Maria Silva"}


@pytest.mark.asyncio
async def test_sign_in_error_carries_provider_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error_description": "Invalid login credentials"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    with pytest.raises(auth.AuthProviderError) as exc_info:
        await auth.sign_in_with_password(
            schemas.LoginRequest(email="maria@example.com", password="wrong-pass"), MOCK_SETTINGS, client=client
        )

    assert exc_info.value.message == "Invalid login credentials"


def test_login_maps_bad_credentials_to_401(test_client: TestClient):
    with patch(
        "main.auth.sign_in_with_password",
        new_callable=AsyncMock,
        side_effect=auth.AuthProviderError(400, "Invalid login credentials"),
    ):
        response = test_client.post("/auth/login", json={"email": "maria@example.com", "password": "wrong-pass"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Incorrect email or password"


def test_signup_maps_existing_email_to_409(test_client: TestClient):
    with patch(
        "main.auth.sign_up",
        new_callable=AsyncMock,
        side_effect=auth.AuthProviderError(422, "User already registered"),
    ):
        response = test_client.post("/auth/signup", json=SIGNUP)

    assert response.status_code == 409


def test_signup_creates_candidate_profile(test_client: TestClient, db_session: Session):
    with patch(
        "main.auth.sign_up",
        new_callable=AsyncMock,
        return_value=schemas.AuthSession(user_id="new-user", email="maria@example.com", access_token="tok"),
    ):
        response = test_client.post("/auth/signup", json=SIGNUP)

    assert response.status_code == 201
    profile = crud.get_profile_by_user_id(db_session, "new-user")
    assert profile.full_name == "Maria Silva"
    assert crud.get_user_role(db_session, "new-user").role == models.AppRole.candidate


def test_oauth_url_redirects_to_dashboard():
    url = auth.oauth_authorize_url("google", MOCK_SETTINGS)

    assert url.startswith("https://auth.test/auth/v1/authorize?provider=google")
    assert "redirect_to=http%3A%2F%2Ftestserver%2Fdashboard" in url


def test_missing_bearer_token_is_401():
    from fastapi import HTTPException

    with pytest.raises(HTTPException) as exc_info:
        auth._bearer_token(None)
    assert exc_info.value.status_code == 401
