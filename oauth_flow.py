"""
Web-server OAuth flow for linking a Gmail account to a chat user.

The chat user id and a short-lived nonce travel through Google in ``state``;
the callback checks the nonce before the authorization code is redeemed.
"""
from __future__ import annotations

import base64
import json
import os
import time
from dataclasses import dataclass
from typing import Optional

import requests
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from credentials import DEFAULT_GRANT_LIFETIME, GOOGLE_TOKEN_URI, TokenGrant, expiry_epoch
from gmail_gateway import GMAIL_SCOPES
from settings import Settings

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
CALLBACK_PATH = "/oauth/callback"

# Google may echo scopes in a different order or add openid; do not treat that as an error.
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")


class OAuthExchangeError(RuntimeError):
    """The authorization code could not be redeemed for tokens."""


@dataclass(frozen=True)
class AuthState:
    user_id: str
    nonce: str


def encode_state(user_id: str, nonce: str) -> str:
    raw = json.dumps({"userId": user_id, "nonce": nonce}, separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_state(state: Optional[str]) -> Optional[AuthState]:
    """Return the decoded state, or None when it is missing or tampered with."""
    if not state:
        return None
    padded = state + "=" * (-len(state) % 4)
    try:
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
    except (ValueError, UnicodeError):
        return None
    if not isinstance(data, dict):
        return None
    user_id = data.get("userId")
    nonce = data.get("nonce")
    if user_id in (None, "") or not isinstance(nonce, str) or not nonce:
        return None
    return AuthState(user_id=str(user_id), nonce=nonce)


def redirect_uri_for(base_url: str) -> str:
    return base_url.rstrip("/") + CALLBACK_PATH


def _client_config(settings: Settings, redirect_uri: str) -> dict:
    return {
        "web": {
            "client_id": settings.google_client_id,
            "client_secret": settings.google_client_secret,
            "auth_uri": GOOGLE_AUTH_URI,
            "token_uri": GOOGLE_TOKEN_URI,
            "redirect_uris": [redirect_uri],
        }
    }


def _build_flow(settings: Settings, redirect_uri: str) -> Flow:
    if not settings.oauth_configured:
        raise OAuthExchangeError("Google OAuth client is not configured.")
    # The code is redeemed by a different request than the one that built the URL,
    # so no PKCE verifier can be carried across.
    return Flow.from_client_config(
        _client_config(settings, redirect_uri),
        scopes=GMAIL_SCOPES,
        redirect_uri=redirect_uri,
        autogenerate_code_verifier=False,
    )


def build_authorization_url(settings: Settings, redirect_uri: str, state: str) -> str:
    flow = _build_flow(settings, redirect_uri)
    url, _ = flow.authorization_url(access_type="offline", prompt="consent", state=state)
    return url


def exchange_code(settings: Settings, code: str, redirect_uri: str) -> TokenGrant:
    flow = _build_flow(settings, redirect_uri)
    try:
        flow.fetch_token(code=code)
    except (OAuth2Error, requests.RequestException, ValueError) as exc:
        raise OAuthExchangeError(f"Token exchange failed: {exc}") from exc
    credentials = flow.credentials
    if not credentials.token:
        raise OAuthExchangeError("Token endpoint returned no access token.")
    return TokenGrant(
        access_token=credentials.token,
        expiry=expiry_epoch(credentials.expiry, time.time() + DEFAULT_GRANT_LIFETIME),
        refresh_token=credentials.refresh_token,
    )
