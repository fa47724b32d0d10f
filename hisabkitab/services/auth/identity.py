"""
Identity Provider Adapter

Wraps Firebase Authentication through the Identity Toolkit REST API.
Supports email/password sign-in and sign-up, Google federated sign-in
(exchanging a Google ID token), and display-name updates.

The provider never holds session state; AuthSession does.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import requests
from pydantic import BaseModel

from hisabkitab.config import get_settings
from hisabkitab.models.finance import User
from hisabkitab.services.storage.interface import (
    BackendUnavailableError,
    UnauthenticatedError,
    ValidationError,
)


IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"

# Firebase error code -> message we show
PROVIDER_MESSAGES = {
    "EMAIL_EXISTS": "An account with this email already exists",
    "EMAIL_NOT_FOUND": "No account found with this email",
    "INVALID_PASSWORD": "Incorrect password",
    "INVALID_LOGIN_CREDENTIALS": "Incorrect email or password",
    "INVALID_EMAIL": "Email address is not valid",
    "MISSING_PASSWORD": "Password is required",
    "WEAK_PASSWORD": "Password should be at least 6 characters",
    "USER_DISABLED": "This account has been disabled",
    "INVALID_ID_TOKEN": "Session expired, please sign in again",
    "TOKEN_EXPIRED": "Session expired, please sign in again",
    "INVALID_IDP_RESPONSE": "Google sign-in failed",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many attempts, please try again later",
}

# Codes caused by what the user typed rather than who they are
INPUT_ERRORS = {"EMAIL_EXISTS", "INVALID_EMAIL", "MISSING_PASSWORD", "WEAK_PASSWORD"}


class SignInResult(BaseModel):
    """What a successful sign-in or sign-up yields."""

    user: User
    id_token: str
    refresh_token: Optional[str] = None
    is_new_user: bool = False


class IdentityProvider(ABC):
    """Remote identity provider contract."""

    @abstractmethod
    async def sign_in_with_email(self, email: str, password: str) -> SignInResult:
        pass

    @abstractmethod
    async def sign_up_with_email(self, email: str, password: str, name: str) -> SignInResult:
        pass

    @abstractmethod
    async def sign_in_with_google(self, google_id_token: str) -> SignInResult:
        pass

    @abstractmethod
    async def update_profile(self, id_token: str, name: str) -> None:
        pass


class FirebaseIdentityProvider(IdentityProvider):
    """
    Firebase Authentication over REST.

    Every call is a single POST; provider error codes are mapped to
    UnauthenticatedError or ValidationError, transport failures to
    BackendUnavailableError.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        if api_key is None or timeout is None:
            settings = get_settings().firebase
            api_key = api_key or settings.web_api_key
            timeout = timeout or settings.request_timeout_seconds
        self._api_key = api_key
        self._timeout = timeout
        self._http = session or requests.Session()

    def _post_sync(self, endpoint: str, payload: dict) -> dict:
        url = f"{IDENTITY_TOOLKIT_URL}/accounts:{endpoint}?key={self._api_key}"
        try:
            response = self._http.post(url, json=payload, timeout=self._timeout)
        except requests.RequestException as e:
            raise BackendUnavailableError(f"Identity provider unreachable: {e}")

        if response.status_code == 200:
            return response.json()

        if response.status_code >= 500:
            raise BackendUnavailableError(
                f"Identity provider error (HTTP {response.status_code})"
            )
        raise self._translate_error(response)

    async def _post(self, endpoint: str, payload: dict) -> dict:
        # requests blocks, so keep it off the event loop
        return await asyncio.to_thread(self._post_sync, endpoint, payload)

    def _translate_error(self, response: requests.Response) -> Exception:
        try:
            raw = response.json().get("error", {}).get("message", "")
        except ValueError:
            raw = ""
        # Messages look like "WEAK_PASSWORD : Password should be at least 6 characters"
        code = raw.split(":")[0].strip()
        message = PROVIDER_MESSAGES.get(code, raw or "Authentication failed")

        if code in INPUT_ERRORS:
            return ValidationError(message, issues=[{"field": "credentials", "code": code}])
        if code == "TOO_MANY_ATTEMPTS_TRY_LATER":
            return BackendUnavailableError(message)
        return UnauthenticatedError(message)

    def _result_from_payload(self, data: dict, name: Optional[str] = None) -> SignInResult:
        user = User(
            id=data["localId"],
            email=data.get("email", ""),
            name=name if name is not None else data.get("displayName", ""),
        )
        return SignInResult(
            user=user,
            id_token=data["idToken"],
            refresh_token=data.get("refreshToken"),
            is_new_user=bool(data.get("isNewUser", False)),
        )

    async def sign_in_with_email(self, email: str, password: str) -> SignInResult:
        data = await self._post("signInWithPassword", {
            "email": email,
            "password": password,
            "returnSecureToken": True,
        })
        return self._result_from_payload(data)

    async def sign_up_with_email(self, email: str, password: str, name: str) -> SignInResult:
        data = await self._post("signUp", {
            "email": email,
            "password": password,
            "returnSecureToken": True,
        })
        await self.update_profile(data["idToken"], name)
        result = self._result_from_payload(data, name=name)
        result.is_new_user = True
        return result

    async def sign_in_with_google(self, google_id_token: str) -> SignInResult:
        data = await self._post("signInWithIdp", {
            "postBody": f"id_token={google_id_token}&providerId=google.com",
            "requestUri": "http://localhost",
            "returnIdpCredential": True,
            "returnSecureToken": True,
        })
        return self._result_from_payload(data)

    async def update_profile(self, id_token: str, name: str) -> None:
        await self._post("update", {
            "idToken": id_token,
            "displayName": name,
            "returnSecureToken": False,
        })
