"""ACME client errors."""
import typing
from typing import Any
from typing import Mapping
from typing import Optional

# We import acmeclient.messages only during type check to avoid circular
# dependencies.
if typing.TYPE_CHECKING:
    import datetime  # pragma: no cover

    from acmeclient import messages  # pragma: no cover


class Error(Exception):
    """Generic ACME client error."""


class UnsupportedKeyType(Error):
    """The key cannot be used to sign JWS requests."""


class UnsupportedChallengeType(ValueError):
    """Unknown challenge ``type`` passed to the challenge factory.

    Signals a usage bug, never a condition reported by the authority,
    and is not an `Error`.

    :ivar str typ: The offending type tag.

    """
    MESSAGE = 'Unsupported resource type'

    def __init__(self, typ: Any) -> None:
        super().__init__(self.MESSAGE)
        self.typ = typ


class ClientError(Error):
    """Client-side protocol error."""


class UnexpectedUpdate(ClientError):
    """Unexpected update error."""


class NonceError(ClientError):
    """Server response nonce error."""


class BadNonce(NonceError):
    """Bad nonce error."""
    def __init__(self, nonce: str, error: Exception, *args: Any) -> None:
        super().__init__(*args)
        self.nonce = nonce
        self.error = error

    def __str__(self) -> str:
        return 'Invalid nonce ({0!r}): {1}'.format(self.nonce, self.error)


class MissingNonce(NonceError):
    """Missing nonce error.

    Raised when the request made only to obtain a nonce came back
    without a ``Replay-Nonce`` header.

    :ivar headers: Mapping of HTTP headers

    """
    def __init__(self, headers: Mapping, *args: Any) -> None:
        super().__init__(*args)
        self.headers = dict(headers)

    def __str__(self) -> str:
        return ('Server response did not include a replay '
                'nonce, headers: {0} (This may be a service outage)'.format(
                    self.headers))


class EmptyPool(NonceError):
    """No nonce left in the pool."""


class NetworkError(ClientError):
    """No response was obtained from the authority."""


class ConnectionFailed(NetworkError):
    """Connection could not be established (refused, DNS, TLS)."""


class Timeout(NetworkError):  # pylint: disable=redefined-builtin
    """Connect or read timeout. Always safe to retry."""


class ServerError(Error):
    """Error reported by the authority.

    :ivar str typ: Problem type URI, if any.
    :ivar str detail: Human readable detail, or the raw body snippet when
        the response did not carry a problem document.
    :ivar int status_code: HTTP status code.
    :ivar messages.Error problem: Parsed problem document, if any.

    """
    def __init__(self, detail: Optional[str] = None, status_code: Optional[int] = None,
                 typ: Optional[str] = None,
                 problem: Optional['messages.Error'] = None) -> None:
        self.detail = detail
        self.status_code = status_code
        self.typ = typ
        self.problem = problem
        super().__init__(detail)

    def __str__(self) -> str:
        if self.problem is not None:
            return str(self.problem)
        parts = [str(part) for part in (self.status_code, self.typ, self.detail)
                 if part is not None]
        return ' :: '.join(parts)

    def __repr__(self) -> str:
        return '{0}(detail={1!r}, status_code={2!r}, typ={3!r})'.format(
            self.__class__.__name__, self.detail, self.status_code, self.typ)


class AlreadyRegistered(ServerError):
    """The account key is already registered (HTTP 409 Conflict).

    :ivar str location: URI of the existing resource.

    """
    def __init__(self, detail: Optional[str] = None, status_code: Optional[int] = None,
                 typ: Optional[str] = None, problem: Optional['messages.Error'] = None,
                 location: Optional[str] = None) -> None:
        super().__init__(detail, status_code, typ, problem)
        self.location = location


class BadCSR(ServerError):
    """The CSR is unacceptable."""


class BadNonceError(ServerError):
    """The authority rejected the anti-replay nonce."""


class ConnectionError(ServerError):  # pylint: disable=redefined-builtin
    """The authority could not connect to the client to validate."""


class Dnssec(ServerError):
    """The authority could not validate a DNSSEC signed domain."""


class Malformed(ServerError):
    """The request message was malformed."""


class InvalidContact(Malformed):
    """A contact URI was rejected."""


class RateLimited(ServerError):
    """Too many requests of a given type.

    :ivar datetime.datetime retry_after: Time suggested by the authority
        for the next attempt, if it sent one.

    """
    retry_after: Optional['datetime.datetime'] = None


class RejectedIdentifier(ServerError):
    """The authority will not issue for the identifier."""


class ServerInternal(ServerError):
    """The authority experienced an internal error."""


class TLSError(ServerError):
    """TLS error during domain validation."""


class Unauthorized(ServerError):
    """The client lacks sufficient authorization."""


class UnknownHost(ServerError):
    """The authority could not resolve a domain name."""


class UnsupportedIdentifier(ServerError):
    """Identifier of an unsupported type."""


SERVER_ERRORS = {
    'badCSR': BadCSR,
    'badNonce': BadNonceError,
    'connection': ConnectionError,
    'dnssec': Dnssec,
    'invalidContact': InvalidContact,
    'invalidEmail': InvalidContact,
    'malformed': Malformed,
    'rateLimited': RateLimited,
    'rejectedIdentifier': RejectedIdentifier,
    'serverInternal': ServerInternal,
    'tls': TLSError,
    'unauthorized': Unauthorized,
    'unknownHost': UnknownHost,
    'unsupportedIdentifier': UnsupportedIdentifier,
}
"""Problem type suffix to exception class."""
