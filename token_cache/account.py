"""
Token endpoint responses as the cache consumes them, and the account record derived from them.
ID tokens are decoded without signature verification: the network layer already trusted the response,
the cache only reads identifying claims.
"""
import base64
import json
from dataclasses import dataclass
from typing import Any

import jwt

from token_cache.errors import InvalidTokenResponseError
from token_cache.items import AccountItem


@dataclass
class TokenResponse:
    access_token: str | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    expires_in: int | None = None
    extended_expires_in: int | None = None
    refresh_in: int | None = None
    scope: str = ""
    token_type: str = "Bearer"
    client_info: str | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "TokenResponse":
        """Parse a raw token endpoint JSON body. Numeric fields may arrive as strings."""
        if not isinstance(payload, dict):
            raise InvalidTokenResponseError("token response must be a JSON object")
        return cls(
            access_token=payload.get("access_token"),
            refresh_token=payload.get("refresh_token"),
            id_token=payload.get("id_token"),
            expires_in=_seconds(payload, "expires_in"),
            extended_expires_in=_seconds(payload, "ext_expires_in"),
            refresh_in=_seconds(payload, "refresh_in"),
            scope=payload.get("scope") or "",
            token_type=payload.get("token_type") or "Bearer",
            client_info=payload.get("client_info"),
        )


def _seconds(payload: dict[str, Any], name: str) -> int | None:
    value = payload.get(name)
    if value is None or value == "":
        return None
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        raise InvalidTokenResponseError(f"{name} is not a number of seconds: {value!r}")
    if seconds < 0:
        raise InvalidTokenResponseError(f"{name} must not be negative")
    return seconds


def decode_client_info(raw: str) -> dict[str, Any]:
    """client_info is base64url (unpadded) JSON with uid/utid."""
    try:
        padded = raw + "=" * (-len(raw) % 4)
        info = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (ValueError, UnicodeError) as e:
        raise InvalidTokenResponseError(f"client_info is not valid base64url JSON: {e}") from e
    if not isinstance(info, dict):
        raise InvalidTokenResponseError("client_info must decode to an object")
    return info


def id_token_claims(id_token: str) -> dict[str, Any]:
    try:
        return jwt.decode(id_token, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        raise InvalidTokenResponseError(f"id_token could not be decoded: {e}") from e


def home_account_id_for(client_info: str | None, claims: dict[str, Any] | None = None) -> str:
    """
    uid.utid from client_info when present; otherwise the oid (or sub) claim of the ID token.
    Empty for account-less flows (e.g. client credentials).
    """
    if client_info:
        info = decode_client_info(client_info)
        uid, utid = info.get("uid"), info.get("utid")
        if uid and utid:
            return f"{uid}.{utid}"
    if claims:
        return str(claims.get("oid") or claims.get("sub") or "")
    return ""


def build_account(environment: str, tenant_id: str | None, response: TokenResponse) -> AccountItem | None:
    """Account record for a response, or None when the response identifies no user."""
    claims = id_token_claims(response.id_token) if response.id_token else {}
    home_account_id = home_account_id_for(response.client_info, claims)
    if not home_account_id:
        return None
    return AccountItem(
        home_account_id=home_account_id,
        environment=environment,
        realm=str(claims.get("tid") or tenant_id or ""),
        local_account_id=str(claims.get("oid") or claims.get("sub") or ""),
        username=str(claims.get("preferred_username") or claims.get("upn") or claims.get("email") or ""),
        name=str(claims.get("name") or ""),
        raw_client_info=response.client_info or "",
    )
