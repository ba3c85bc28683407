import pytest

from deflix.core.errors import (
    DeflixError, InvalidCredential, NotCached, ProviderUnavailable, QuotaExceeded, TicketExpired,
)


@pytest.mark.parametrize("error_cls,status", [
    (InvalidCredential, 401),
    (ProviderUnavailable, 503),
    (NotCached, 409),
    (QuotaExceeded, 429),
    (TicketExpired, 404),
])
def test_default_message_and_status(error_cls, status):
    error = error_cls()

    assert isinstance(error, DeflixError)
    assert error.status_code == status
    assert error.message == error_cls.message
    assert str(error) == error_cls.message


def test_custom_message():
    error = ProviderUnavailable("Token check timed out after 5.0s")

    assert error.message == "Token check timed out after 5.0s"
    assert str(error) == "Token check timed out after 5.0s"
    assert ProviderUnavailable.message != error.message
