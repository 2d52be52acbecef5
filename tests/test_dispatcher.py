"""
Tests for the request gate.
Run with: pytest tests/test_dispatcher.py
"""

import pytest

from voicebridge.dispatcher import Dispatcher
from voicebridge.errors import AuthorizationFailure, OriginRejected, ValidationFailure


@pytest.fixture
def dispatcher():
    return Dispatcher("secret", ["https://app.example.com"])


def test_matching_bearer_token_passes(dispatcher):
    dispatcher.check_authorization("Bearer secret")


@pytest.mark.parametrize("header", [None, "", "secret", "Bearer wrong", "bearer secret", "Bearer secret "])
def test_bad_bearer_token(dispatcher, header):
    with pytest.raises(AuthorizationFailure):
        dispatcher.check_authorization(header)


def test_empty_configured_key_rejects_everything():
    gate = Dispatcher("")
    with pytest.raises(AuthorizationFailure):
        gate.check_authorization("Bearer ")
    with pytest.raises(AuthorizationFailure):
        gate.check_authorization(None)


def test_origin_allow_list(dispatcher):
    dispatcher.check_origin("https://app.example.com")
    dispatcher.check_origin(None)
    with pytest.raises(OriginRejected):
        dispatcher.check_origin("https://evil.example.com")


def test_origin_checked_before_authorization(dispatcher):
    """A bad origin wins even when the token is also wrong."""
    with pytest.raises(OriginRejected):
        dispatcher.admit("https://evil.example.com", "Bearer wrong")
    with pytest.raises(AuthorizationFailure):
        dispatcher.admit("https://app.example.com", "Bearer wrong")
    dispatcher.admit("https://app.example.com", "Bearer secret")


def test_require_fields(dispatcher):
    body = {"price_id": "price_1", "stripe_customer_id": "cus_1"}
    assert dispatcher.require(body, "price_id", "stripe_customer_id") is body


@pytest.mark.parametrize("value", [None, "", [], {}])
def test_require_treats_empty_as_missing(dispatcher, value):
    with pytest.raises(ValidationFailure):
        dispatcher.require({"email": value}, "email")


def test_require_rejects_non_object(dispatcher):
    with pytest.raises(ValidationFailure):
        dispatcher.require(["email"], "email")


def test_parse_chat_request(dispatcher, chat_body):
    request = dispatcher.parse_chat_request(chat_body())
    assert request.user_id == "user-1"
    assert request.model.id == "model-1"
    with pytest.raises(ValidationFailure):
        dispatcher.parse_chat_request({"messages": []})
