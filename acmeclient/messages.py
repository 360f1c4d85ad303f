"""ACME protocol messages."""
import datetime
from typing import Any
from typing import Dict
from typing import Mapping
from typing import Optional
from typing import Tuple
from typing import Type
from typing import TypeVar
from typing import Union
import urllib.parse

from cryptography import x509
import josepy as jose

from acmeclient import challenges
from acmeclient import errors
from acmeclient import fields

OLD_ERROR_PREFIX = "urn:acme:error:"
ERROR_PREFIX = "urn:ietf:params:acme:error:"

ERROR_CODES = {
    'badCSR': 'The CSR is unacceptable (e.g., due to a short key)',
    'badNonce': 'The client sent an unacceptable anti-replay nonce',
    'connection': ('The server could not connect to the client to verify the'
                   ' domain'),
    'dnssec': 'The server could not validate a DNSSEC signed domain',
    # deprecate invalidEmail
    'invalidEmail': 'The provided email for a registration was invalid',
    'invalidContact': 'The provided contact URI was invalid',
    'malformed': 'The request message was malformed',
    'rateLimited': 'There were too many requests of a given type',
    'rejectedIdentifier': 'The server will not issue certificates for the identifier',
    'serverInternal': 'The server experienced an internal error',
    'tls': 'The server experienced a TLS error during domain verification',
    'unauthorized': 'The client lacks sufficient authorization',
    'unknownHost': 'The server could not resolve a domain name',
    'unsupportedIdentifier': 'An identifier is of an unsupported type',
}

ERROR_TYPE_DESCRIPTIONS = dict(
    (ERROR_PREFIX + name, desc) for name, desc in ERROR_CODES.items())

ERROR_TYPE_DESCRIPTIONS.update(dict(  # add errors with old prefix, deprecate me
    (OLD_ERROR_PREFIX + name, desc) for name, desc in ERROR_CODES.items()))


class Error(jose.JSONObjectWithFields):
    """ACME problem document.

    https://tools.ietf.org/html/draft-ietf-appsawg-http-problem-00

    :ivar str typ:
    :ivar str title:
    :ivar str detail:

    """
    typ: str = jose.field('type', omitempty=True, default='about:blank')
    title: str = jose.field('title', omitempty=True)
    detail: str = jose.field('detail', omitempty=True)

    @classmethod
    def with_code(cls, code: str, **kwargs: Any) -> 'Error':
        """Create an Error instance with an ACME Error code.

        :str code: An ACME error code, like 'dnssec'.
        :kwargs: kwargs to pass to Error.

        """
        if code not in ERROR_CODES:
            raise ValueError("The supplied code: %s is not a known ACME error"
                             " code" % code)
        return cls(typ=OLD_ERROR_PREFIX + code, **kwargs)

    @property
    def description(self) -> Optional[str]:
        """Hardcoded error description based on its type.

        :returns: Description if standard ACME error or ``None``.
        :rtype: str

        """
        return ERROR_TYPE_DESCRIPTIONS.get(self.typ)

    @property
    def code(self) -> Optional[str]:
        """Problem subtype: whatever follows the last ``:`` or ``/`` of the type.

        :rtype: str

        """
        if not self.typ:
            return None
        return str(self.typ).rsplit(':', maxsplit=1)[-1].rsplit('/', maxsplit=1)[-1]

    def to_exception(self, status_code: Optional[int] = None,
                     retry_after: Optional[datetime.datetime] = None) -> errors.ServerError:
        """Build the typed exception for this problem.

        Unrecognized subtypes produce a plain `.ServerError`.

        :param int status_code: HTTP status of the response.
        :param datetime.datetime retry_after: Only kept by `.RateLimited`.

        :rtype: `.ServerError`

        """
        exc_cls = errors.SERVER_ERRORS.get(self.code or '', errors.ServerError)
        exc = exc_cls(detail=self.detail, status_code=status_code,
                      typ=self.typ, problem=self)
        if isinstance(exc, errors.RateLimited):
            exc.retry_after = retry_after
        return exc

    def __str__(self) -> str:
        return b' :: '.join(
            part.encode('ascii', 'backslashreplace') for part in
            (self.typ, self.description, self.detail, self.title)
            if part is not None).decode()


STATUS_PENDING = 'pending'
STATUS_PROCESSING = 'processing'
STATUS_VALID = 'valid'
STATUS_INVALID = 'invalid'

TERMINAL_STATUSES = frozenset([STATUS_VALID, STATUS_INVALID])
"""Statuses the authority never moves a challenge out of."""

IDENTIFIER_FQDN = 'dns'


class Identifier(jose.JSONObjectWithFields):
    """ACME identifier.

    :ivar str typ:
    :ivar str value:

    """
    typ: str = jose.field('type')
    value: str = jose.field('value')


class ResourceBody(jose.JSONObjectWithFields):
    """ACME Resource Body."""
    resource_type: str = NotImplemented


R = TypeVar('R', bound=Type[ResourceBody])


class Directory(jose.JSONDeSerializable):
    """Directory of authority endpoints, keyed by resource type."""

    DEFAULT_PATHS = {
        'new-reg': '/acme/new-reg',
        'new-authz': '/acme/new-authz',
        'new-cert': '/acme/new-cert',
        'revoke-cert': '/acme/revoke-cert',
    }

    _REGISTERED_TYPES: Dict[str, Type[ResourceBody]] = {}

    @classmethod
    def _canon_key(cls, key: Union[str, ResourceBody, Type[ResourceBody]]) -> str:
        if isinstance(key, str):
            return key
        return key.resource_type

    @classmethod
    def register(cls, resource_body_cls: R) -> R:
        """Register resource."""
        resource_type = resource_body_cls.resource_type
        assert resource_type not in cls._REGISTERED_TYPES
        cls._REGISTERED_TYPES[resource_type] = resource_body_cls
        return resource_body_cls

    def __init__(self, jobj: Mapping[str, Any]) -> None:
        self._jobj = {self._canon_key(key): value for key, value in jobj.items()}

    def __getattr__(self, name: str) -> Any:
        try:
            return self[name.replace('_', '-')]
        except KeyError as error:
            raise AttributeError(str(error))

    def __getitem__(self, name: Union[str, ResourceBody, Type[ResourceBody]]) -> Any:
        try:
            return self._jobj[self._canon_key(name)]
        except KeyError:
            raise KeyError('Directory field "' + self._canon_key(name) + '" not found')

    def __contains__(self, name: Union[str, ResourceBody, Type[ResourceBody]]) -> bool:
        return self._canon_key(name) in self._jobj

    def to_partial_json(self) -> Dict[str, Any]:
        return self._jobj

    @classmethod
    def from_json(cls, jobj: Mapping[str, Any]) -> 'Directory':
        return cls(jobj)

    @classmethod
    def default(cls, endpoint: str) -> 'Directory':
        """Directory made of the well-known ACME v1 paths under ``endpoint``."""
        return cls({resource_type: urllib.parse.urljoin(endpoint, path)
                    for resource_type, path in cls.DEFAULT_PATHS.items()})


class Registration(ResourceBody):
    """Registration Resource Body.

    :ivar jose.JWK key: Public key.
    :ivar tuple contact: Contact URIs as sent to the authority,
        `tuple` of `str`.
    :ivar str agreement: Terms of service URL the account agreed to.

    """
    # on new-reg key server ignores 'key' and populates it based on
    # JWS.signature.combined.jwk
    key: jose.JWK = jose.field('key', omitempty=True, decoder=jose.JWK.from_json)
    contact: Tuple[str, ...] = jose.field('contact', omitempty=True, default=(),
                                          decoder=tuple)
    agreement: str = jose.field('agreement', omitempty=True)
    status: str = jose.field('status', omitempty=True)

    phone_prefix = 'tel:'
    email_prefix = 'mailto:'

    def _filter_contact(self, prefix: str) -> Tuple[str, ...]:
        return tuple(
            detail[len(prefix):] for detail in self.contact  # pylint: disable=not-an-iterable
            if detail.startswith(prefix))

    @property
    def phones(self) -> Tuple[str, ...]:
        """All phones found in the ``contact`` field."""
        return self._filter_contact(self.phone_prefix)

    @property
    def emails(self) -> Tuple[str, ...]:
        """All emails found in the ``contact`` field."""
        return self._filter_contact(self.email_prefix)


@Directory.register
class NewRegistration(Registration):
    """New registration."""
    resource_type = 'new-reg'
    resource: str = fields.resource(resource_type)


class UpdateRegistration(Registration):
    """Update registration."""
    resource_type = 'reg'
    resource: str = fields.resource(resource_type)


class ChallengeBody(ResourceBody):
    """Challenge Resource Body.

    :ivar acmeclient.challenges.Challenge chall: Wrapped challenge.
        Conveniently, all challenge fields are proxied, i.e. you can
        call ``challb.x`` to get ``challb.chall.x`` contents.
    :ivar str uri: Location of the challenge.
    :ivar str status:
    :ivar datetime.datetime validated:
    :ivar messages.Error error:

    """
    __slots__ = ('chall',)
    uri: str = jose.field('uri', omitempty=True)
    status: str = jose.field('status', omitempty=True, default=STATUS_PENDING)
    validated: datetime.datetime = fields.rfc3339('validated', omitempty=True)
    error: Error = jose.field('error', decoder=Error.from_json,
                              omitempty=True, default=None)

    def to_partial_json(self) -> Dict[str, Any]:
        jobj = super().to_partial_json()
        jobj.update(self.chall.to_partial_json())
        return jobj

    @classmethod
    def fields_from_json(cls, jobj: Mapping[str, Any]) -> Dict[str, Any]:
        jobj_fields = super().fields_from_json(jobj)
        jobj_fields['chall'] = challenges.Challenge.from_json(jobj)
        return jobj_fields

    def __getattr__(self, name: str) -> Any:
        return getattr(self.chall, name)


class Authorization(ResourceBody):
    """Authorization Resource Body.

    :ivar acmeclient.messages.Identifier identifier:
    :ivar tuple challenges: `tuple` of `.ChallengeBody`
    :ivar tuple combinations: Challenge combinations (`tuple` of `tuple`
        of `int`, as opposed to `list` of `list` on the wire).
    :ivar str status:
    :ivar datetime.datetime expires:

    """
    identifier: Identifier = jose.field('identifier', decoder=Identifier.from_json, omitempty=True)
    challenges: Tuple[ChallengeBody, ...] = jose.field('challenges', omitempty=True, default=())
    combinations: Tuple[Tuple[int, ...], ...] = jose.field('combinations', omitempty=True)

    status: str = jose.field('status', omitempty=True, default=STATUS_PENDING)
    expires: datetime.datetime = fields.rfc3339('expires', omitempty=True)

    # Mypy does not understand the josepy magic happening here, and falsely claims
    # that challenge is redefined. Let's ignore the type check here.
    @challenges.decoder  # type: ignore
    def challenges(value: Any) -> Tuple[ChallengeBody, ...]:  # type: ignore[misc]  # pylint: disable=no-self-argument,missing-function-docstring
        return tuple(ChallengeBody.from_json(chall) for chall in value)

    @combinations.decoder  # type: ignore
    def combinations(value: Any) -> Tuple[Tuple[int, ...], ...]:  # type: ignore[misc]  # pylint: disable=no-self-argument,missing-function-docstring
        return tuple(tuple(combo) for combo in value)

    @property
    def resolved_combinations(self) -> Tuple[Tuple[ChallengeBody, ...], ...]:
        """Combinations with challenges instead of indices."""
        return tuple(tuple(self.challenges[idx] for idx in combo)
                     for combo in self.combinations or ())  # pylint: disable=not-an-iterable


@Directory.register
class NewAuthorization(Authorization):
    """New authorization."""
    resource_type = 'new-authz'
    resource: str = fields.resource(resource_type)


@Directory.register
class CertificateRequest(ResourceBody):
    """ACME new-cert request.

    :ivar cryptography.x509.CertificateSigningRequest csr:

    """
    resource_type = 'new-cert'
    resource: str = fields.resource(resource_type)
    csr: x509.CertificateSigningRequest = fields.der_csr('csr')


@Directory.register
class Revocation(ResourceBody):
    """Revocation message.

    :ivar cryptography.x509.Certificate certificate:
    :ivar int reason: Optional CRL reason code.

    """
    resource_type = 'revoke-cert'
    resource: str = fields.resource(resource_type)
    certificate: x509.Certificate = fields.der_cert('certificate')
    reason: int = jose.field('reason', omitempty=True)

