"""Tests for acmeclient.errors."""
import sys
import unittest

import pytest


class BadNonceTest(unittest.TestCase):
    """Tests for acmeclient.errors.BadNonce."""

    def setUp(self):
        from acmeclient.errors import BadNonce
        self.error = BadNonce(nonce="xxx", error="error")

    def test_str(self):
        assert "Invalid nonce ('xxx'): error" == str(self.error)


class MissingNonceTest(unittest.TestCase):
    """Tests for acmeclient.errors.MissingNonce."""

    def setUp(self):
        from acmeclient.errors import MissingNonce
        self.error = MissingNonce({'Content-Type': 'text/html'})

    def test_str(self):
        assert "text/html" in str(self.error)
        assert "replay nonce" in str(self.error)


class UnsupportedChallengeTypeTest(unittest.TestCase):
    """Tests for acmeclient.errors.UnsupportedChallengeType."""

    def test_message(self):
        from acmeclient import errors
        error = errors.UnsupportedChallengeType('nope')
        assert str(error) == 'Unsupported resource type'
        assert error.typ == 'nope'
        assert isinstance(error, ValueError)
        assert not isinstance(error, errors.Error)


class ServerErrorTest(unittest.TestCase):
    """Tests for acmeclient.errors.ServerError."""

    def test_str_without_problem(self):
        from acmeclient.errors import ServerError
        error = ServerError(detail='<html>oops</html>', status_code=500)
        assert str(error) == '500 :: <html>oops</html>'

    def test_str_with_problem(self):
        from acmeclient.errors import ServerError
        from acmeclient.messages import Error
        problem = Error(typ='urn:acme:error:malformed', detail='bad contact')
        error = ServerError(detail=problem.detail, status_code=400,
                            typ=problem.typ, problem=problem)
        assert 'bad contact' in str(error)
        assert 'urn:acme:error:malformed' in str(error)

    def test_repr(self):
        from acmeclient.errors import Unauthorized
        error = Unauthorized(detail='no', status_code=403)
        assert repr(error) == "Unauthorized(detail='no', status_code=403, typ=None)"

    def test_already_registered_location(self):
        from acmeclient.errors import AlreadyRegistered
        error = AlreadyRegistered(detail='in use', status_code=409,
                                  location='http://127.0.0.1:4000/acme/reg/1')
        assert error.location == 'http://127.0.0.1:4000/acme/reg/1'
        assert 'in use' in str(error)


class ServerErrorsTest(unittest.TestCase):
    """Tests for acmeclient.errors.SERVER_ERRORS."""

    def test_invalid_email_is_malformed(self):
        from acmeclient import errors
        assert issubclass(errors.SERVER_ERRORS['invalidEmail'], errors.Malformed)
        assert errors.SERVER_ERRORS['invalidEmail'] is errors.SERVER_ERRORS['invalidContact']

    def test_all_server_errors(self):
        from acmeclient import errors
        for exc_cls in errors.SERVER_ERRORS.values():
            assert issubclass(exc_cls, errors.ServerError)

    def test_network_errors_are_client_errors(self):
        from acmeclient import errors
        assert issubclass(errors.Timeout, errors.NetworkError)
        assert issubclass(errors.ConnectionFailed, errors.NetworkError)
        assert issubclass(errors.NetworkError, errors.ClientError)
        assert not issubclass(errors.NetworkError, errors.ServerError)


if __name__ == "__main__":
    sys.exit(pytest.main(sys.argv[1:] + [__file__]))  # pragma: no cover
