import pytest

from listenstats.errors import (
    AuthError,
    ForbiddenError,
    NotFoundError,
    RateLimitedError,
    ServiceUnavailableError,
    UnknownUpstreamError,
    UpstreamClientError,
    ValidationError,
    error_for_status,
    parse_retry_after,
)


@pytest.mark.parametrize(
    "status,own_api,expected",
    [
        (400, True, ValidationError),
        (400, False, UpstreamClientError),
        (401, False, AuthError),
        (403, False, ForbiddenError),
        (404, True, NotFoundError),
        (409, False, UpstreamClientError),
        (429, False, RateLimitedError),
        (500, False, ServiceUnavailableError),
        (503, True, ServiceUnavailableError),
        (304, False, UnknownUpstreamError),
    ],
)
def test_error_for_status(status, own_api, expected):
    assert type(error_for_status(status, own_api=own_api)) is expected


def test_status_codes_and_bodies():
    assert AuthError().status == 401
    assert AuthError().to_body() == {
        "error": "Invalid or expired token. Please log in again.",
        "code": "TOKEN_EXPIRED",
    }
    assert AuthError("x", code="UNAUTHENTICATED").code == "UNAUTHENTICATED"
    assert ForbiddenError().to_body()["code"] == "FORBIDDEN"
    assert RateLimitedError(retry_after=3).retry_after == 3
    assert UnknownUpstreamError().to_body()["code"] == "INTERNAL_ERROR"
    assert ValidationError("bad", parameter="limit").to_body() == {
        "error": "bad",
        "code": "INVALID_PARAMETER",
        "parameter": "limit",
    }


@pytest.mark.parametrize(
    "value,expected",
    [(None, 1.0), ("2", 2.0), (" 5 ", 5.0), ("0.5", 0.5), ("soon", 1.0), ("-3", 1.0)],
)
def test_parse_retry_after(value, expected):
    assert parse_retry_after(value) == expected
