"""Tests for token response parsing and account derivation (client_info, ID token claims)."""
import pytest

from conftest import make_client_info, make_id_token
from token_cache.account import (
    TokenResponse,
    build_account,
    decode_client_info,
    home_account_id_for,
    id_token_claims,
)
from token_cache.errors import InvalidTokenResponseError


def test_from_dict_parses_numeric_strings():
    response = TokenResponse.from_dict(
        {"access_token": "at", "expires_in": "3599", "ext_expires_in": "7199", "scope": "a b"}
    )
    assert response.expires_in == 3599
    assert response.extended_expires_in == 7199
    assert response.refresh_in is None
    assert response.token_type == "Bearer"


@pytest.mark.parametrize("bad", ["soon", -5, [1]])
def test_from_dict_rejects_bad_expires_in(bad):
    with pytest.raises(InvalidTokenResponseError):
        TokenResponse.from_dict({"access_token": "at", "expires_in": bad})


def test_from_dict_rejects_non_object():
    with pytest.raises(InvalidTokenResponseError):
        TokenResponse.from_dict(["access_token"])


def test_client_info_round_trip_without_padding():
    assert decode_client_info(make_client_info("u", "t")) == {"uid": "u", "utid": "t"}


def test_bad_client_info():
    with pytest.raises(InvalidTokenResponseError):
        decode_client_info("%%%")


def test_home_account_id_prefers_client_info():
    claims = {"oid": "object-id", "sub": "subject"}
    assert home_account_id_for(make_client_info("u", "t"), claims) == "u.t"
    assert home_account_id_for(None, claims) == "object-id"
    assert home_account_id_for(None, {"sub": "subject"}) == "subject"
    assert home_account_id_for(None, None) == ""


def test_id_token_claims_not_signature_checked():
    token = make_id_token(oid="o", tid="t", exp=1)
    assert id_token_claims(token)["oid"] == "o"


def test_undecodable_id_token():
    with pytest.raises(InvalidTokenResponseError):
        id_token_claims("not-a-jwt")


def test_build_account_fields():
    response = TokenResponse(
        id_token=make_id_token(oid="o", tid="home-tenant", upn="ada@corp", name="Ada"),
        client_info=make_client_info("o", "home-tenant"),
    )
    account = build_account("login.example.com", "request-tenant", response)
    assert account.home_account_id == "o.home-tenant"
    assert account.realm == "home-tenant"
    assert account.username == "ada@corp"
    assert account.name == "Ada"
    assert account.raw_client_info == response.client_info


def test_build_account_none_without_identity():
    assert build_account("login.example.com", "t", TokenResponse(access_token="at")) is None
