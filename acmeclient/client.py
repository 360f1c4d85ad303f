"""ACME client API."""
import base64
import datetime
from email.utils import parsedate_tz
import http.client as http_client
import logging
import re
from typing import Any
from typing import Dict
from typing import List
from typing import Mapping
from typing import Optional
from typing import Sequence
from typing import Tuple
from typing import Union
import urllib.parse

from cryptography import x509
import josepy as jose
import requests
from requests.adapters import HTTPAdapter
from requests.utils import parse_header_links

from acmeclient import errors
from acmeclient import jws
from acmeclient import messages
from acmeclient import nonce
from acmeclient import resources

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = 'http://127.0.0.1:4000'
DEFAULT_USER_AGENT = 'acme-client'
DEFAULT_NETWORK_TIMEOUT = 45
DEFAULT_CHAIN_MAX_LENGTH = 10


class Client:
    """ACME client for the v1 protocol.

    :ivar josepy.JWK key: Account key.
    :ivar messages.Directory directory:
    :ivar ClientNetwork net: Client network.

    """

    def __init__(self, key: Any, endpoint: str = DEFAULT_ENDPOINT,
                 directory_uri: Optional[str] = None,
                 connection_options: Optional[Mapping[str, Any]] = None,
                 alg: Optional[jose.JWASignature] = None, verify_ssl: bool = True,
                 user_agent: str = DEFAULT_USER_AGENT,
                 net: Optional['ClientNetwork'] = None) -> None:
        """Initialize.

        :param key: Account key, see `.jws.jwk_from_key`.
        :param str endpoint: Base URL of the authority.
        :param str directory_uri: Path or URL of the directory. When
            omitted, the well-known v1 paths under ``endpoint`` are used.
        :param dict connection_options: See `ClientNetwork`.
        :param josepy.JWASignature alg: Signature algorithm, derived from
            the key type by default.
        :param ClientNetwork net: Preconfigured network, the other
            network related arguments are then ignored.

        :raises .UnsupportedKeyType: if the key cannot sign requests.

        """
        self.key = jws.jwk_from_key(key)
        self.endpoint = endpoint
        if net is None:
            net = ClientNetwork(self.key, alg=alg, verify_ssl=verify_ssl,
                                user_agent=user_agent,
                                connection_options=connection_options)
        self.net = net
        if directory_uri is None:
            self.directory = messages.Directory.default(endpoint)
        else:
            self.directory = self.get_directory(
                urllib.parse.urljoin(endpoint, directory_uri), self.net)

    @classmethod
    def get_directory(cls, url: str, net: 'ClientNetwork') -> messages.Directory:
        """Retrieve the directory of the authority.

        :param str url: URL of the directory.
        :param ClientNetwork net: the ClientNetwork to use to make the request

        :rtype: `messages.Directory`

        """
        return messages.Directory.from_json(net.get(url).json())

    def post(self, url: str, obj: jose.JSONDeSerializable, **kwargs: Any) -> requests.Response:
        """Wrapper around self.net.post that adds the nonce bootstrap URL."""
        kwargs.setdefault('nonce_url', self.directory['new-reg'])
        return self.net.post(url, obj, **kwargs)

    def register(self, contact: Union[str, Sequence[str]] = ()) -> resources.Registration:
        """Register a new account.

        :param contact: Contact URI or sequence of contact URIs, e.g.
            ``mailto:cert-admin@example.com``.

        :raises .AlreadyRegistered: if the key is already registered.

        :returns: Registration resource.
        :rtype: `.resources.Registration`

        """
        if isinstance(contact, str):
            contact = (contact,)
        response = self.post(self.directory[messages.NewRegistration],
                             messages.NewRegistration(contact=tuple(contact)))
        uri = self._location(response)
        terms_of_service = None
        if 'terms-of-service' in response.links:
            terms_of_service = response.links['terms-of-service']['url']
        return resources.Registration(
            self, messages.Registration.from_json(response.json()), uri, terms_of_service)

    def authorize(self, domain: str) -> resources.Authorization:
        """Request an authorization for a domain.

        :param str domain: Domain name.

        :raises .Unauthorized: if the account did not agree to the terms.
        :raises .Malformed: if the authority refuses the domain name.

        :rtype: `.resources.Authorization`

        """
        identifier = messages.Identifier(typ=messages.IDENTIFIER_FQDN, value=domain)
        response = self.post(self.directory[messages.NewAuthorization],
                             messages.NewAuthorization(identifier=identifier))
        return self._authorization_from_response(
            response, identifier=identifier, uri=response.headers.get('Location'))

    def fetch_authorization(self, uri: str) -> resources.Authorization:
        """Fetch an authorization by URL.

        :param str uri: Canonical URL of the authorization.

        :rtype: `.resources.Authorization`

        """
        return self._authorization_from_response(self.net.get(uri), uri=uri)

    def _authorization_from_response(self, response: requests.Response,
                                     identifier: Optional[messages.Identifier] = None,
                                     uri: Optional[str] = None) -> resources.Authorization:
        body = messages.Authorization.from_json(response.json())
        if identifier is not None and body.identifier != identifier:
            raise errors.UnexpectedUpdate(body)
        return resources.Authorization(self, body, response.headers.get('Location', uri))

    def challenge_from_hash(self, attributes: Mapping[str, Any]) -> resources.Challenge:
        """Build a challenge resource from its ``type``, ``token`` and ``uri``.

        :raises .UnsupportedChallengeType: for an unknown ``type``.

        """
        return resources.challenge_from_hash(self, attributes)

    def new_certificate(self, csr: Union[x509.CertificateSigningRequest,
                                         resources.CertificateRequest]
                        ) -> resources.Certificate:
        """Request issuance of a certificate.

        :param csr: CSR, or a `.resources.CertificateRequest` the CSR
            (and its key) is generated from.

        :raises .Unauthorized: if some name lacks a valid authorization.

        :returns: Certificate along with its chain.
        :rtype: `.resources.Certificate`

        """
        request = None
        if isinstance(csr, resources.CertificateRequest):
            request = csr
            csr = request.csr
        response = self.post(
            self.directory[messages.CertificateRequest],
            messages.CertificateRequest(csr=csr),
            content_type=ClientNetwork.DER_CONTENT_TYPE,
            headers={'Accept': ClientNetwork.DER_CONTENT_TYPE})
        uri = self._location(response)
        return resources.Certificate(
            self._load_der_cert(response), uri=uri,
            chain=self.fetch_chain(response), request=request)

    def fetch_chain(self, response: requests.Response,
                    max_length: int = DEFAULT_CHAIN_MAX_LENGTH) -> List[x509.Certificate]:
        """Follow the ``up`` links to fetch the intermediate certificates.

        :param requests.Response response: Response carrying the leaf.
        :param int max_length: Maximum allowed length of the chain.

        :raises .ClientError: if the chain is longer than ``max_length``.

        :returns: Intermediates, closest to the leaf first.
        :rtype: `list` of `cryptography.x509.Certificate`

        """
        chain: List[x509.Certificate] = []
        links = self._get_links(response, 'up')
        while links:
            if len(chain) >= max_length:
                raise errors.ClientError(
                    "Recursion limit reached. Didn't get {0}".format(links[0]))
            response = self.net.get(links[0], content_type=ClientNetwork.DER_CONTENT_TYPE,
                                    headers={'Accept': ClientNetwork.DER_CONTENT_TYPE})
            chain.append(self._load_der_cert(response))
            links = self._get_links(response, 'up')
        return chain

    def revoke_certificate(self, certificate: Union[resources.Certificate, x509.Certificate],
                           private_key: Optional[Any] = None,
                           reason: Optional[int] = None) -> None:
        """Revoke a certificate.

        :param certificate: Certificate to revoke.
        :param private_key: Key of the certificate. The request is
            signed with it instead of the account key when given.
        :param int reason: Optional CRL reason code.

        :raises .Unauthorized: if the signing key is not related to the
            certificate nor to the account that requested it.
        :raises .ClientError: If revocation is unsuccessful.

        """
        if isinstance(certificate, resources.Certificate):
            certificate = certificate.x509
        key = None if private_key is None else jws.jwk_from_key(private_key)
        response = self.post(self.directory[messages.Revocation],
                             messages.Revocation(certificate=certificate, reason=reason),
                             content_type=None, key=key)
        if response.status_code != http_client.OK:
            raise errors.ClientError(
                'Successful revocation must return HTTP OK status')

    @classmethod
    def _location(cls, response: requests.Response) -> str:
        try:
            return response.headers['Location']
        except KeyError:
            raise errors.ClientError('"Location" header missing')

    @classmethod
    def _load_der_cert(cls, response: requests.Response) -> x509.Certificate:
        try:
            return x509.load_der_x509_certificate(response.content)
        except ValueError as error:
            raise errors.ClientError('Invalid certificate received: {0}'.format(error))

    def _get_links(self, response: requests.Response, relation_type: str) -> List[str]:
        """
        Retrieves all Link URIs of relation_type from the response.
        :param requests.Response response: The requests HTTP response.
        :param str relation_type: The relation type to filter by.
        """
        # Can't use response.links directly because it drops multiple links
        # of the same relation type.
        if 'Link' not in response.headers:
            return []
        links = parse_header_links(response.headers['Link'])
        return [urllib.parse.urljoin(response.url or self.endpoint, l['url'])
                for l in links
                if 'rel' in l and 'url' in l and l['rel'] == relation_type]


class ClientNetwork:
    """Wrapper around requests that signs POSTs for authentication.

    Also adds user agent, harvests nonces and maps error responses to
    exceptions.

    :param josepy.JWK key: Account private key
    :param josepy.JWASignature alg: Algorithm to use in signing JWS,
        derived from the key type by default.
    :param bool verify_ssl: Whether to verify certificates on SSL connections.
    :param str user_agent: String to send as User-Agent header.
    :param dict connection_options: ``open_timeout`` and ``timeout`` are
        the connect and read timeouts in seconds, any other key is passed
        as is to `requests.Session.request`.
    :param requests.Session session: Session to send requests with.
    :param .NonceManager nonces: Nonce pool.

    """
    JSON_CONTENT_TYPE = 'application/json'
    JOSE_CONTENT_TYPE = 'application/jose+json'
    JSON_ERROR_CONTENT_TYPE = 'application/problem+json'
    DER_CONTENT_TYPE = 'application/pkix-cert'
    REPLAY_NONCE_HEADER = 'Replay-Nonce'
    ERROR_SNIPPET_LENGTH = 512

    def __init__(self, key: jose.JWK, alg: Optional[jose.JWASignature] = None,
                 verify_ssl: bool = True, user_agent: str = DEFAULT_USER_AGENT,
                 connection_options: Optional[Mapping[str, Any]] = None,
                 session: Optional[requests.Session] = None,
                 nonces: Optional[nonce.NonceManager] = None) -> None:
        self.key = key
        self.alg = alg if alg is not None else jws.alg_for_key(key)
        self.verify_ssl = verify_ssl
        self.user_agent = user_agent
        self.connection_options = dict(connection_options or {})
        self._timeout, self._request_kwargs = self._split_connection_options(
            self.connection_options)
        self._nonces = nonces if nonces is not None else nonce.NonceManager()
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter()
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

    def __del__(self) -> None:
        # Try to close the session, but don't show exceptions to the
        # user if the call to close() fails.
        try:
            self.session.close()
        except Exception:  # pylint: disable=broad-except
            pass

    @classmethod
    def _split_connection_options(cls, options: Mapping[str, Any]
                                  ) -> Tuple[Tuple[float, float], Dict[str, Any]]:
        passthrough = dict(options)
        read_timeout = passthrough.pop('timeout', None)
        open_timeout = passthrough.pop('open_timeout', None)
        if read_timeout is None:
            read_timeout = DEFAULT_NETWORK_TIMEOUT
        if open_timeout is None:
            open_timeout = read_timeout
        return (open_timeout, read_timeout), passthrough

    @property
    def timeout(self) -> Tuple[float, float]:
        """Connect and read timeouts, in seconds."""
        return self._timeout

    @property
    def nonces(self) -> nonce.NonceManager:
        return self._nonces

    def _wrap_in_jws(self, obj: jose.JSONDeSerializable, nonce_value: bytes, url: str,
                     key: Optional[jose.JWK] = None) -> str:
        """Wrap `JSONDeSerializable` object in JWS.

        :param josepy.JSONDeSerializable obj:
        :param bytes nonce_value:
        :param str url: The URL to which this object will be POSTed
        :param josepy.JWK key: Signing key, the account key by default.
        :rtype: str

        """
        jobj = obj.json_dumps(indent=2).encode()
        logger.debug('JWS payload:\n%s', jobj)
        if key is None or key is self.key:
            key, alg = self.key, self.alg
        else:
            alg = jws.alg_for_key(key)
        return jws.JWS.sign(jobj, key=key, alg=alg, nonce=nonce_value,
                            url=url).json_dumps(indent=2)

    @classmethod
    def _check_response(cls, response: requests.Response,
                        content_type: Optional[str] = None) -> requests.Response:
        """Check response content and its type.

        .. note::
           Checking is not strict: wrong server response ``Content-Type``
           HTTP header is ignored if response is an expected JSON object.

        :param str content_type: Expected Content-Type response header.
            If JSON is expected and not present in server response, this
            function will raise an error. Otherwise, wrong Content-Type
            is ignored, but logged.

        :raises .ServerError: If the server response is not a success,
            the most specific subclass matching its problem document.
        :raises .ClientError: If a JSON response was expected but not
            received.

        """
        response_ct = response.headers.get('Content-Type')
        # Strip parameters from the media-type (rfc2616#section-3.7)
        if response_ct:
            response_ct = response_ct.split(';')[0].strip()
        try:
            jobj = response.json()
        except ValueError:
            jobj = None

        if response.status_code == http_client.CONFLICT:
            problem = cls._problem(jobj, response)
            raise errors.AlreadyRegistered(
                detail=problem.detail if problem else cls._snippet(response),
                status_code=response.status_code,
                typ=problem.typ if problem else None, problem=problem,
                location=response.headers.get('Location'))

        if not response.ok:
            problem = cls._problem(jobj, response)
            if problem is None:
                raise errors.ServerError(detail=cls._snippet(response),
                                         status_code=response.status_code)
            if response_ct != cls.JSON_ERROR_CONTENT_TYPE:
                logger.debug(
                    'Ignoring wrong Content-Type (%r) for JSON Error',
                    response_ct)
            retry_after = None
            if 'Retry-After' in response.headers:
                retry_after = cls.retry_after(response, default=0)
            raise problem.to_exception(response.status_code, retry_after=retry_after)

        if jobj is not None and response_ct != cls.JSON_CONTENT_TYPE:
            logger.debug(
                'Ignoring wrong Content-Type (%r) for JSON decodable '
                'response', response_ct)

        if content_type == cls.JSON_CONTENT_TYPE and jobj is None:
            raise errors.ClientError(f'Unexpected response Content-Type: {response_ct}')

        return response

    @classmethod
    def _problem(cls, jobj: Any, response: requests.Response) -> Optional[messages.Error]:
        """Problem document of an error response, if it carries one.

        Missing ``detail`` is filled with the raw body snippet.

        """
        if not isinstance(jobj, dict) or not ('type' in jobj or 'detail' in jobj):
            return None
        try:
            problem = messages.Error.from_json(jobj)
        except jose.DeserializationError as error:
            logger.debug('Invalid problem document %r: %s', jobj, error)
            return None
        if problem.detail is None:
            problem = problem.update(detail=cls._snippet(response))
        return problem

    @classmethod
    def _snippet(cls, response: requests.Response) -> str:
        return response.text[:cls.ERROR_SNIPPET_LENGTH]

    @classmethod
    def retry_after(cls, response: requests.Response, default: int) -> datetime.datetime:
        """Compute next attempt time based on response ``Retry-After`` header.

        Handles integers and various datestring formats per
        https://www.w3.org/Protocols/rfc2616/rfc2616-sec14.html#sec14.37

        :param requests.Response response: Response of the authority.
        :param int default: Default value (in seconds), used when
            ``Retry-After`` header is not present or invalid.

        :returns: Time point when next attempt should be performed.
        :rtype: `datetime.datetime`

        """
        retry_after = response.headers.get('Retry-After', str(default))
        try:
            seconds = int(retry_after)
        except ValueError:
            # The RFC 2822 parser handles all of RFC 2616's cases
            when = parsedate_tz(retry_after)
            if when is not None:
                try:
                    tz_secs = datetime.timedelta(seconds=when[-1] or 0)
                    return datetime.datetime(
                        *when[:6], tzinfo=datetime.timezone.utc) - tz_secs
                except (ValueError, OverflowError):
                    pass
            seconds = default

        return datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(seconds=seconds)

    def _send_request(self, method: str, url: str, *args: Any, **kwargs: Any) -> requests.Response:
        """Send HTTP request.

        Makes sure that `verify_ssl` and the connection options are
        respected. Logs request and response (with headers) and stores
        the ``Replay-Nonce`` of every response. For allowed parameters
        please see `requests.request`.

        :param str method: method for the new `requests.Request` object
        :param str url: URL for the new `requests.Request` object

        :raises .Timeout: if the connect or read timeout expired.
        :raises .ConnectionFailed: if no connection could be made.

        :returns: HTTP Response
        :rtype: `requests.Response`

        """
        if method == "POST":
            logger.debug('Sending POST request to %s:\n%s',
                         url, kwargs['data'])
        else:
            logger.debug('Sending %s request to %s.', method, url)
        kwargs['verify'] = self.verify_ssl
        kwargs.setdefault('headers', {})
        kwargs['headers'].setdefault('User-Agent', self.user_agent)
        kwargs.setdefault('timeout', self._timeout)
        for option, value in self._request_kwargs.items():
            kwargs.setdefault(option, value)
        try:
            response = self.session.request(method, url, *args, **kwargs)
        except requests.exceptions.Timeout as error:
            raise errors.Timeout(self._readable_request_error(error))
        except requests.exceptions.ConnectionError as error:
            raise errors.ConnectionFailed(self._readable_request_error(error))
        except requests.exceptions.RequestException as error:
            raise errors.NetworkError(self._readable_request_error(error))

        # If an Accept header was sent in the request, the response may not be
        # UTF-8 encoded. In this case, we don't set response.encoding and log
        # the base64 response instead of raw bytes to keep binary data out of the logs.
        debug_content: Union[bytes, str]
        if "Accept" in kwargs["headers"]:
            debug_content = base64.b64encode(response.content)
        else:
            response.encoding = "utf-8"
            debug_content = response.text
        logger.debug('Received response:\nHTTP %d\n%s\n\n%s',
                     response.status_code,
                     "\n".join("{0}: {1}".format(k, v)
                               for k, v in response.headers.items()),
                     debug_content)
        self._add_nonce(response)
        return response

    @classmethod
    def _readable_request_error(cls, error: requests.exceptions.RequestException) -> str:
        """Shorten the messages of requests exceptions.

        Example:
        HTTPSConnectionPool(host='acme-v01.api.example.org',
        port=443): Max retries exceeded with url: /directory
        (Caused by NewConnectionError('
        <requests.packages.urllib3.connection.VerifiedHTTPSConnection
        object at 0x108356c50>: Failed to establish a new connection:
        [Errno 65] No route to host',))

        """
        # pylint: disable=line-too-long
        err_regex = r".*host='(\S*)'.*Max retries exceeded with url\: (\/\w*).*(\[Errno \d+\])([A-Za-z ]*)"
        m = re.match(err_regex, str(error))
        if m is None:
            return str(error)
        host, path, _err_no, err_msg = m.groups()
        return f"Requesting {host}{path}:{err_msg}"

    def head(self, *args: Any, **kwargs: Any) -> requests.Response:
        """Send HEAD request without checking the response.

        Note, that `_check_response` is not called, as it is expected
        that status code other than successfully 2xx will be returned.

        """
        return self._send_request('HEAD', *args, **kwargs)

    def get(self, url: str, content_type: Optional[str] = JSON_CONTENT_TYPE,
            **kwargs: Any) -> requests.Response:
        """Send GET request and check response."""
        return self._check_response(
            self._send_request('GET', url, **kwargs), content_type=content_type)

    def _add_nonce(self, response: requests.Response) -> None:
        if self.REPLAY_NONCE_HEADER in response.headers:
            self._nonces.push(response.headers[self.REPLAY_NONCE_HEADER])

    def _get_nonce(self, url: str, nonce_url: Optional[str] = None) -> bytes:
        try:
            return self._nonces.next()
        except errors.EmptyPool:
            logger.debug('Requesting fresh nonce')
        response = self.head(nonce_url or url)
        try:
            return self._nonces.next()
        except errors.EmptyPool:
            raise errors.MissingNonce(response.headers)

    def post(self, *args: Any, **kwargs: Any) -> requests.Response:
        """POST object wrapped in `.JWS` and check response.

        If the server responded with a badNonce error, the request will
        be retried once.

        """
        try:
            return self._post_once(*args, **kwargs)
        except errors.BadNonceError as error:
            logger.debug('Retrying request after error:\n%s', error)
            return self._post_once(*args, **kwargs)

    def _post_once(self, url: str, obj: jose.JSONDeSerializable,
                   content_type: Optional[str] = JSON_CONTENT_TYPE,
                   key: Optional[jose.JWK] = None, nonce_url: Optional[str] = None,
                   **kwargs: Any) -> requests.Response:
        data = self._wrap_in_jws(obj, self._get_nonce(url, nonce_url), url, key=key)
        headers = dict(kwargs.pop('headers', {}))
        headers.setdefault('Content-Type', self.JOSE_CONTENT_TYPE)
        response = self._send_request('POST', url, data=data, headers=headers, **kwargs)
        return self._check_response(response, content_type=content_type)
