"""ACME resources.

Resources wrap the wire messages from `acmeclient.messages` together with
their canonical URL and the `.Client` that fetched them, so that each one
can talk back to the authority on its own.

"""
import datetime
import logging
import typing
from typing import Any
from typing import Dict
from typing import List
from typing import Mapping
from typing import Optional
from typing import Sequence
from typing import Type
from typing import TypeVar
import urllib.parse

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.types import CertificateIssuerPrivateKeyTypes
from cryptography.x509.oid import NameOID

from acmeclient import challenges
from acmeclient import crypto_util
from acmeclient import errors
from acmeclient import messages

if typing.TYPE_CHECKING:
    from acmeclient.client import Client  # pragma: no cover

logger = logging.getLogger(__name__)

GenericChallenge = TypeVar('GenericChallenge', bound=Type['Challenge'])


class Registration:
    """Account registered with the authority.

    Several copies of the same account are independent: `agree_terms`
    only updates the instance it is called on.

    :ivar messages.Registration body: Latest registration body.
    :ivar str uri: Canonical URL of the registration.
    :ivar str terms_of_service: URL of the subscriber agreement, if the
        authority announced one.

    """

    def __init__(self, client: 'Client', body: messages.Registration, uri: str,
                 terms_of_service: Optional[str] = None) -> None:
        self.client = client
        self.body = body
        self.uri = uri
        self.terms_of_service = terms_of_service

    def __repr__(self) -> str:
        return '<{0} {1}>'.format(self.__class__.__name__, self.uri)

    @property
    def contact(self) -> typing.Tuple[str, ...]:
        """Contact URIs of the account."""
        return self.body.contact

    @property
    def agreement(self) -> Optional[str]:
        """Subscriber agreement URL the account agreed to."""
        return self.body.agreement

    @property
    def agreed(self) -> bool:
        """Has the account agreed to the subscriber agreement?"""
        return self.body.agreement is not None

    def agree_terms(self) -> 'Registration':
        """Agree to the subscriber agreement.

        The current `terms_of_service` URL is echoed back to the
        authority and `body` is replaced by the updated registration.

        :returns: This registration.
        :rtype: `Registration`

        """
        if self.terms_of_service is None:
            logger.debug('No terms of service announced for %s', self.uri)
            return self
        update = messages.UpdateRegistration(
            contact=self.body.contact, agreement=self.terms_of_service)
        response = self.client.post(self.uri, update)
        self.body = messages.Registration.from_json(response.json())
        return self

    def reload(self) -> 'Registration':
        """Fetch the current state of the registration.

        :returns: New snapshot, this instance is left untouched.
        :rtype: `Registration`

        """
        response = self.client.post(self.uri, messages.UpdateRegistration())
        terms_of_service = self.terms_of_service
        if 'terms-of-service' in response.links:
            terms_of_service = response.links['terms-of-service']['url']
        return type(self)(self.client, messages.Registration.from_json(response.json()),
                          self.uri, terms_of_service)


class Challenge:
    """Challenge of an authorization.

    Subclasses are registered with `register` under the challenge type
    they handle and built by `challenge_from_hash` or by `Authorization`.

    :ivar messages.ChallengeBody challb: Latest challenge body.

    """
    TYPES: Dict[str, Type['Challenge']] = {}
    typ: str = NotImplemented

    @classmethod
    def register(cls, challenge_cls: GenericChallenge) -> GenericChallenge:
        """Register challenge resource class."""
        cls.TYPES[challenge_cls.typ] = challenge_cls
        return challenge_cls

    def __init__(self, client: 'Client', challb: messages.ChallengeBody) -> None:
        self.client = client
        self.challb = challb

    def __repr__(self) -> str:
        return '<{0} {1} {2}>'.format(self.__class__.__name__, self.uri, self.status)

    @property
    def chall(self) -> challenges.KeyAuthorizationChallenge:
        """Wrapped challenge message."""
        return self.challb.chall

    @property
    def token(self) -> str:
        return self.chall.token

    @property
    def uri(self) -> str:
        return self.challb.uri

    @property
    def url(self) -> str:
        """`uri` resolved against the endpoint of the client."""
        return urllib.parse.urljoin(self.client.endpoint, self.uri)

    @property
    def status(self) -> str:
        return self.challb.status

    @property
    def error(self) -> Optional[messages.Error]:
        return self.challb.error

    @property
    def key_authorization(self) -> str:
        """Key authorization for the account key of the client."""
        return self.chall.key_authorization(self.client.key)

    def response(self) -> challenges.KeyAuthorizationChallengeResponse:
        return self.chall.response(self.client.key)

    def request_verification(self) -> bool:
        """Ask the authority to check the published validation.

        Local `status` is not changed, call `verify_status` to follow
        the progress of the validation.

        :returns: ``True`` once the authority accepted the request.

        """
        self.client.post(self.url, self.response())
        return True

    def verify_status(self) -> str:
        """Refresh `status` (and `error`) from the authority.

        A challenge in a terminal state is not fetched again.

        :returns: Current status.
        :rtype: str

        """
        if self.status in messages.TERMINAL_STATUSES:
            logger.debug('Challenge %s already %s', self.uri, self.status)
            return self.status
        response = self.client.net.get(self.url)
        challb = messages.ChallengeBody.from_json(response.json())
        if challb.uri is None:
            challb = challb.update(uri=self.uri)
        self.challb = challb
        return self.status


@Challenge.register
class HTTP01(Challenge):
    """http-01 challenge: serve `file_content` at `filename`."""
    typ = challenges.HTTP01.typ

    content_type = 'text/plain'

    @property
    def filename(self) -> str:
        """Path of the file to serve, relative to the web root.

        :raises .ClientError: If the token would escape the
            ``.well-known/acme-challenge`` directory.

        """
        if not self.chall.good_token:
            raise errors.ClientError('Unsafe http-01 token: {0!r}'.format(self.token))
        return self.chall.path.lstrip('/')

    @property
    def file_content(self) -> str:
        return self.key_authorization

    def validation_uri(self, domain: str) -> str:
        """URL the authority fetches to validate ``domain``."""
        return self.chall.uri(domain)

    def simple_verify(self, domain: str, **kwargs: Any) -> bool:
        """Check that the file is served as expected.

        :param str domain: Domain being validated.
        :param kwargs: Passed on to `.HTTP01Response.simple_verify`.

        """
        return self.response().simple_verify(
            self.chall, domain, self.client.key.public_key(), **kwargs)


@Challenge.register
class DNS01(Challenge):
    """dns-01 challenge: publish `record_content` in a TXT record."""
    typ = challenges.DNS01.typ

    record_name = challenges.DNS01.LABEL
    record_type = 'TXT'

    @property
    def record_content(self) -> str:
        return self.chall.validation(self.client.key)

    def validation_domain_name(self, domain: str) -> str:
        return self.chall.validation_domain_name(domain)

    def simple_verify(self, domain: str) -> bool:
        """Check the key authorization behind `record_content`.

        DNS itself is not queried.

        """
        return self.response().simple_verify(
            self.chall, domain, self.client.key.public_key())


@Challenge.register
class TLSSNI01(Challenge):
    """tls-sni-01 challenge: present `certificate` for `hostname`.

    :ivar private_key: Key of the challenge certificate, generated on
        first use unless set beforehand.

    """
    typ = challenges.TLSSNI01.typ

    def __init__(self, client: 'Client', challb: messages.ChallengeBody) -> None:
        super().__init__(client, challb)
        self._private_key: Optional[CertificateIssuerPrivateKeyTypes] = None
        self._certificate: Optional[x509.Certificate] = None

    @property
    def hostname(self) -> str:
        """SNI name the authority asks for."""
        return self.hostnames[0]

    @property
    def hostnames(self) -> List[str]:
        """SNI names for all ``n`` iterations."""
        response = typing.cast(challenges.TLSSNI01Response, self.response())
        return [name.decode() for name in response.z_domains(self.chall.n)]

    @property
    def private_key(self) -> CertificateIssuerPrivateKeyTypes:
        if self._private_key is None:
            self._private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        return self._private_key

    @private_key.setter
    def private_key(self, value: CertificateIssuerPrivateKeyTypes) -> None:
        self._private_key = value
        self._certificate = None

    @property
    def certificate(self) -> x509.Certificate:
        """Self-signed certificate covering all `hostnames`."""
        if self._certificate is None:
            self._certificate, _ = self.chall.validation(
                self.client.key, cert_key=self.private_key)
        return self._certificate

    def simple_verify(self, domain: str, **kwargs: Any) -> bool:
        """Probe ``domain`` and check the certificate it presents.

        :param str domain: Domain being validated.
        :param kwargs: Passed on to `.TLSSNI01Response.simple_verify`.

        """
        return self.response().simple_verify(
            self.chall, domain, self.client.key.public_key(), **kwargs)


def challenge_from_hash(client: 'Client', attributes: Mapping[str, Any]) -> Challenge:
    """Build a challenge resource from its JSON attributes.

    :param .Client client:
    :param attributes: Mapping with at least ``type``, ``token`` and ``uri``.

    :raises .UnsupportedChallengeType: if ``type`` is not supported.

    :rtype: `Challenge`

    """
    typ = attributes.get('type')
    try:
        challenge_cls = Challenge.TYPES[typ]
    except (KeyError, TypeError):
        raise errors.UnsupportedChallengeType(typ)
    return challenge_cls(client, messages.ChallengeBody.from_json(dict(attributes)))


class Authorization:
    """Authorization of the account for a domain.

    :ivar messages.Authorization body:
    :ivar str uri: Canonical URL of the authorization.
    :ivar list challenges: `Challenge` resources, in the order the authority
        listed them. Unsupported challenge types are left out.

    """

    def __init__(self, client: 'Client', body: messages.Authorization, uri: str) -> None:
        self.client = client
        self.body = body
        self.uri = uri
        self.challenges: List[Challenge] = []
        for challb in body.challenges:
            challenge_cls = Challenge.TYPES.get(challb.chall.typ)
            if challenge_cls is None:
                logger.debug('Skipping unsupported challenge: %s', challb.chall.to_json())
                continue
            self.challenges.append(challenge_cls(client, challb))

    def __repr__(self) -> str:
        return '<{0} {1} {2}>'.format(self.__class__.__name__, self.domain, self.status)

    @property
    def domain(self) -> str:
        return self.body.identifier.value

    @property
    def status(self) -> str:
        return self.body.status

    @property
    def expires(self) -> Optional[datetime.datetime]:
        return self.body.expires

    @property
    def combinations(self) -> Optional[typing.Tuple[typing.Tuple[int, ...], ...]]:
        return self.body.combinations

    def _first(self, challenge_cls: Type[Challenge]) -> Optional[Challenge]:
        for challenge in self.challenges:
            if isinstance(challenge, challenge_cls):
                return challenge
        return None

    @property
    def http01(self) -> Optional[HTTP01]:
        return typing.cast(Optional[HTTP01], self._first(HTTP01))

    @property
    def dns01(self) -> Optional[DNS01]:
        return typing.cast(Optional[DNS01], self._first(DNS01))

    @property
    def tls_sni01(self) -> Optional[TLSSNI01]:
        return typing.cast(Optional[TLSSNI01], self._first(TLSSNI01))

    def reload(self) -> 'Authorization':
        """Fetch the current state of the authorization.

        :returns: New snapshot, this instance is left untouched.
        :rtype: `Authorization`

        """
        return self.client.fetch_authorization(self.uri)


class CertificateRequest:
    """Description of the certificate to request.

    The CSR and, unless one is supplied, its private key are generated
    on first use.

    :param str common_name: Subject CN, defaults to the first of ``names``.
    :param list names: DNS names for the subjectAltName extension,
        defaults to ``[common_name]``.
    :param private_key: Key of the certificate.
    :param cryptography.x509.Name subject: Full subject, overrides
        ``common_name`` in the CSR.

    """
    DEFAULT_KEY_SIZE = 2048

    def __init__(self, common_name: Optional[str] = None,
                 names: Optional[Sequence[str]] = None,
                 private_key: Optional[CertificateIssuerPrivateKeyTypes] = None,
                 subject: Optional[x509.Name] = None) -> None:
        self.names = list(names or [])
        if common_name is not None and common_name not in self.names:
            self.names.insert(0, common_name)
        if not self.names:
            raise ValueError('A common name or at least one name is required')
        self.common_name = common_name or self.names[0]
        self.subject = subject
        self._private_key = private_key
        self._csr: Optional[x509.CertificateSigningRequest] = None

    @property
    def private_key(self) -> CertificateIssuerPrivateKeyTypes:
        if self._private_key is None:
            self._private_key = rsa.generate_private_key(
                public_exponent=65537, key_size=self.DEFAULT_KEY_SIZE)
        return self._private_key

    @property
    def private_key_pem(self) -> bytes:
        """Private key in PEM PKCS#8 format."""
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption())

    @property
    def csr(self) -> x509.CertificateSigningRequest:
        if self._csr is None:
            self._csr = crypto_util.make_csr(
                self.private_key, self.names, common_name=self.common_name,
                subject=self.subject)
        return self._csr


class Certificate:
    """Issued certificate.

    :ivar cryptography.x509.Certificate x509: Leaf certificate.
    :ivar list x509_chain: Intermediate certificates, in the order
        they were fetched.
    :ivar str uri: Canonical URL of the certificate.
    :ivar CertificateRequest request: Request the certificate was issued
        for, if one was used.

    """

    def __init__(self, x509_cert: x509.Certificate, uri: Optional[str] = None,
                 chain: Sequence[x509.Certificate] = (),
                 request: Optional[CertificateRequest] = None) -> None:
        self.x509 = x509_cert
        self.x509_chain = list(chain)
        self.uri = uri
        self.request = request

    def __repr__(self) -> str:
        return '<{0} {1}>'.format(self.__class__.__name__, self.uri)

    @property
    def x509_fullchain(self) -> List[x509.Certificate]:
        """Leaf followed by the intermediates."""
        return [self.x509] + self.x509_chain

    @property
    def common_name(self) -> Optional[str]:
        cns = self.x509.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        if not cns:
            return None
        return str(cns[0].value)

    @property
    def names(self) -> List[str]:
        """Common name and DNS subjectAltNames."""
        return crypto_util.get_names_from_subject_and_extensions(
            self.x509.subject, self.x509.extensions)

    def to_pem(self) -> bytes:
        return self.x509.public_bytes(serialization.Encoding.PEM)

    def chain_to_pem(self) -> bytes:
        return crypto_util.dump_cryptography_chain(self.x509_chain)

    def fullchain_to_pem(self) -> bytes:
        return crypto_util.dump_cryptography_chain(self.x509_fullchain)
