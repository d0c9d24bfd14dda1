"""
Client for the hosted identity provider (Firebase Authentication REST API).

The remote store uses it for sign-up/sign-in, e-mail verification and the
provider-level password reset e-mail. Privileged calls (setting another
user's password) authenticate with a service account through google-auth,
and admin ID tokens are verified with google-auth as well, so neither check
relies on what the client says about itself.
"""
import asyncio
import json
import logging
from typing import Any

import aiohttp
import google.auth.transport.requests
from google.oauth2 import id_token as google_id_token
from google.oauth2 import service_account

from core.config import Config, settings
from database.errors import BackendUnavailable, DuplicateAccount, NotFound, WeakPassword

_ADMIN_SCOPES = [
    "https://www.googleapis.com/auth/cloud-platform",
    "https://www.googleapis.com/auth/identitytoolkit",
]

# Provider error codes that mean "wrong identifier or password".
_CREDENTIAL_ERRORS = {
    "EMAIL_NOT_FOUND",
    "INVALID_PASSWORD",
    "INVALID_LOGIN_CREDENTIALS",
    "INVALID_EMAIL",
    "USER_DISABLED",
}


class IdentityError(Exception):
    def __init__(self, code: str, status: int):
        super().__init__(f"{code} (HTTP {status})")
        self.code = code
        self.status = status


def _error_code(payload: Any) -> str:
    try:
        message = payload["error"]["message"]
    except (KeyError, TypeError):
        return "UNKNOWN"
    # e.g. "WEAK_PASSWORD : Password should be at least 6 characters"
    return str(message).split(":", 1)[0].strip()


class IdentityToolkitClient:
    def __init__(self, config: Config | None = None):
        self.config = config or settings
        self._admin_credentials = None

    # ---- transport -----------------------------------------------------

    async def _post(self, url: str, payload: dict[str, Any], bearer: str | None = None) -> dict[str, Any]:
        params = {}
        headers = {}
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        elif self.config.firebase_api_key:
            params["key"] = self.config.firebase_api_key
        try:
            async with aiohttp.ClientSession() as http:
                async with http.post(url, json=payload, params=params, headers=headers) as resp:
                    body = await resp.json(content_type=None)
                    status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
            logging.error(f"Identity provider unreachable: {e}")
            raise BackendUnavailable("Identity provider unavailable") from e

        if status >= 500:
            raise BackendUnavailable(f"Identity provider error (HTTP {status})")
        if status >= 400:
            raise IdentityError(_error_code(body), status)
        return body or {}

    def _accounts_url(self, action: str) -> str:
        return f"{self.config.identity_toolkit_url}/accounts:{action}"

    # ---- end-user calls --------------------------------------------------

    async def sign_up(self, email: str, password: str) -> dict[str, Any]:
        try:
            return await self._post(
                self._accounts_url("signUp"),
                {"email": email, "password": password, "returnSecureToken": True},
            )
        except IdentityError as e:
            if e.code == "EMAIL_EXISTS":
                raise DuplicateAccount(f"An account already exists for {email}") from e
            if e.code == "WEAK_PASSWORD":
                raise WeakPassword("Password rejected by the identity provider") from e
            raise

    async def sign_in_with_password(self, email: str, password: str) -> dict[str, Any] | None:
        try:
            return await self._post(
                self._accounts_url("signInWithPassword"),
                {"email": email, "password": password, "returnSecureToken": True},
            )
        except IdentityError as e:
            if e.code in _CREDENTIAL_ERRORS:
                return None
            raise

    async def lookup(self, id_token: str) -> dict[str, Any] | None:
        body = await self._post(self._accounts_url("lookup"), {"idToken": id_token})
        users = body.get("users") or []
        return users[0] if users else None

    async def update_profile(self, id_token: str, display_name: str | None = None, photo_url: str | None = None):
        payload: dict[str, Any] = {"idToken": id_token, "returnSecureToken": False}
        if display_name is not None:
            payload["displayName"] = display_name
        if photo_url is not None:
            payload["photoUrl"] = photo_url
        await self._post(self._accounts_url("update"), payload)

    async def send_email_verification(self, id_token: str):
        await self._post(self._accounts_url("sendOobCode"), {"requestType": "VERIFY_EMAIL", "idToken": id_token})

    async def send_password_reset_email(self, email: str):
        await self._post(self._accounts_url("sendOobCode"), {"requestType": "PASSWORD_RESET", "email": email})

    # ---- privileged calls ------------------------------------------------

    def _admin_token_sync(self) -> str:
        if self._admin_credentials is None:
            if not self.config.firebase_service_account:
                raise RuntimeError("FIREBASE_SERVICE_ACCOUNT is not set; admin password changes are unavailable.")
            info = json.loads(self.config.firebase_service_account)
            self._admin_credentials = service_account.Credentials.from_service_account_info(
                info, scopes=_ADMIN_SCOPES
            )
        if not self._admin_credentials.valid:
            self._admin_credentials.refresh(google.auth.transport.requests.Request())
        return self._admin_credentials.token

    async def admin_set_password(self, user_id: str, new_password: str):
        token = await asyncio.to_thread(self._admin_token_sync)
        url = f"{self.config.identity_toolkit_url}/projects/{self.config.firebase_project_id}/accounts:update"
        try:
            await self._post(url, {"localId": user_id, "password": new_password}, bearer=token)
        except IdentityError as e:
            if e.code == "USER_NOT_FOUND":
                raise NotFound(f"User {user_id} not found") from e
            if e.code == "WEAK_PASSWORD":
                raise WeakPassword("Password rejected by the identity provider") from e
            raise

    def _verify_id_token_sync(self, token: str) -> dict[str, Any] | None:
        request = google.auth.transport.requests.Request()
        try:
            return google_id_token.verify_firebase_token(
                token, request, audience=self.config.firebase_project_id
            )
        except ValueError as e:
            logging.warning(f"Rejected ID token: {e}")
            return None

    async def verify_id_token(self, token: str) -> dict[str, Any] | None:
        """Returns the verified claims, or None for an invalid/expired token."""
        if not token:
            return None
        if not self.config.firebase_project_id:
            logging.error("FIREBASE_PROJECT_ID is not set; refusing to verify ID tokens without an audience")
            return None
        return await asyncio.to_thread(self._verify_id_token_sync, token)
