"""Tests for AuthConfig validation and derived values."""

import dataclasses

import pytest

from conftest import AIS_API_URL, ISSUER
from tppauth.config import AuthConfig
from tppauth.core.schemas import AuthorizationType


def test_expected_issuer_is_authorize_origin(config):
    assert config.expected_issuer == ISSUER
    assert config.audience == ISSUER


def test_explicit_audience(config):
    assert dataclasses.replace(config, request_object_audience="https://aud.example").audience == "https://aud.example"


def test_redirect_and_api_urls(config):
    assert config.redirect_uri_for(AuthorizationType.PAYMENTS) == "https://tpp.example/payments/oauth/callback"
    assert config.api_url_for(AuthorizationType.ACCOUNTS) == AIS_API_URL
    assert config.api_url_for(AuthorizationType.CONFIRMATION_OF_FUNDS) is None


def test_missing_redirect_uri(config):
    with pytest.raises(ValueError, match="No redirect URI"):
        dataclasses.replace(config, cof_redirect_uri=None).redirect_uri_for(
            AuthorizationType.CONFIRMATION_OF_FUNDS,
        )


def test_unsupported_algorithm(config):
    with pytest.raises(ValueError, match="Unsupported signing algorithm"):
        dataclasses.replace(config, signing_algorithm="HS256")


def test_required_fields():
    with pytest.raises(ValueError, match="client_id"):
        AuthConfig(
            client_id="",
            client_secret="s",
            authorize_url="https://a.example/authorize",
            token_url="https://a.example/token",
            jwks_url="https://a.example/jwks",
        )


def test_positive_timeouts(config):
    with pytest.raises(ValueError, match="Timeouts"):
        dataclasses.replace(config, token_timeout=0)
