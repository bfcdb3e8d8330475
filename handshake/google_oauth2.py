from __future__ import annotations

import urllib.parse

import httpx

from handshake.errors import UpstreamExchangeFailed, UpstreamProfileFailed
from handshake.models import TokenBundle, UserInfo

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

DEFAULT_SCOPES = [
    "openid",
    "email",
    "profile",
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/drive.readonly",
]


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    state: str,
    *,
    prompt: str | None = None,
    access_type: str | None = None,
) -> str:
    query = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "state": state,
        "scope": " ".join(scopes),
        "response_type": "code",
    }
    if prompt:
        query["prompt"] = prompt
    if access_type:
        query["access_type"] = access_type
    return f"{GOOGLE_AUTHORIZE_URL}?{urllib.parse.urlencode(query)}"


def token_bundle_from_payload(payload: object) -> TokenBundle:
    if not isinstance(payload, dict):
        raise UpstreamExchangeFailed("Token response must be a JSON object.")

    access_token = payload.get("access_token")
    refresh_token = payload.get("refresh_token")
    expires_in = payload.get("expires_in")

    if not isinstance(access_token, str) or not access_token:
        raise UpstreamExchangeFailed("Token response missing access_token.")
    if refresh_token is not None and not isinstance(refresh_token, str):
        raise UpstreamExchangeFailed("Token response refresh_token must be a string.")
    if isinstance(expires_in, bool) or not isinstance(expires_in, int):
        raise UpstreamExchangeFailed("Token response missing expires_in.")

    return TokenBundle(
        access_token=access_token,
        refresh_token=refresh_token or None,
        expires_in=expires_in,
    )


def user_info_from_payload(payload: object) -> UserInfo:
    if not isinstance(payload, dict):
        raise UpstreamProfileFailed("Userinfo response must be a JSON object.")

    email = payload.get("email")
    name = payload.get("name")
    picture = payload.get("picture")

    if not isinstance(email, str) or not email:
        raise UpstreamProfileFailed("Userinfo response missing email.")

    return UserInfo(
        email=email,
        name=name if isinstance(name, str) else "",
        picture=picture if isinstance(picture, str) and picture else None,
    )


def _error_description(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return "Token exchange failed"
    if not isinstance(payload, dict):
        return "Token exchange failed"
    detail = payload.get("error_description") or payload.get("error")
    return str(detail) if detail else "Token exchange failed"


async def exchange_code(
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenBundle:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        response = await http_client.post(
            GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": client_id,
                "client_secret": client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
            headers={"Accept": "application/json"},
        )
    except httpx.HTTPError as error:
        raise UpstreamExchangeFailed(f"Token exchange request failed: {error}") from error
    finally:
        if own_client:
            await http_client.aclose()

    if not response.is_success:
        raise UpstreamExchangeFailed(_error_description(response))

    try:
        payload = response.json()
    except ValueError as error:
        raise UpstreamExchangeFailed("Token response is not valid JSON.") from error
    return token_bundle_from_payload(payload)


async def fetch_user_info(
    access_token: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> UserInfo:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        response = await http_client.get(
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        response.raise_for_status()
        payload = response.json()
    except httpx.HTTPStatusError as error:
        raise UpstreamProfileFailed(
            f"Userinfo request failed with status {error.response.status_code}: "
            f"{error.response.text}"
        ) from error
    except httpx.HTTPError as error:
        raise UpstreamProfileFailed(f"Userinfo request failed: {error}") from error
    except ValueError as error:
        raise UpstreamProfileFailed("Userinfo response is not valid JSON.") from error
    finally:
        if own_client:
            await http_client.aclose()

    return user_info_from_payload(payload)
