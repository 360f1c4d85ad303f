"""Crypto utilities."""
import contextlib
import datetime
import logging
import socket
from typing import List
from typing import Optional
from typing import Sequence
from typing import Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.types import CertificateIssuerPrivateKeyTypes
from cryptography.x509.oid import NameOID
from OpenSSL import SSL

from acmeclient import errors

logger = logging.getLogger(__name__)

_DEFAULT_SSL_METHOD = SSL.TLS_METHOD

_MAX_CN_LENGTH = 64


def probe_sni(name: bytes, host: str, port: int = 443, timeout: int = 300,
              method: int = _DEFAULT_SSL_METHOD,
              source_address: Tuple[str, int] = ('', 0)) -> x509.Certificate:
    """Probe SNI server for SSL certificate.

    :param bytes name: Byte string to send as the server name in the
        client hello message.
    :param str host: Host to connect to.
    :param int port: Port to connect to.
    :param int timeout: Timeout in seconds.
    :param method: See `OpenSSL.SSL.Context` for allowed values.
    :param tuple source_address: Enables multi-path probing (selection
        of source interface). See `socket.create_connection` for more
        info.

    :raises acmeclient.errors.Error: In case of any problems.

    :returns: SSL certificate presented by the server.
    :rtype: cryptography.x509.Certificate

    """
    context = SSL.Context(method)
    context.set_timeout(timeout)

    try:
        logger.debug(
            "Attempting to connect to %s:%d%s.", host, port,
            " from {0}:{1}".format(
                source_address[0],
                source_address[1]
            ) if any(source_address) else ""
        )
        sock = socket.create_connection((host, port), source_address=source_address)
    except socket.error as error:
        raise errors.Error(error)

    with contextlib.closing(sock) as client:
        client_ssl = SSL.Connection(context, client)
        client_ssl.set_connect_state()
        client_ssl.set_tlsext_host_name(name)
        try:
            client_ssl.do_handshake()
            client_ssl.shutdown()
        except SSL.Error as error:
            raise errors.Error(error)
    cert = client_ssl.get_peer_certificate()
    if cert is None:
        raise errors.Error('No certificate presented for {0!r}'.format(name))
    return cert.to_cryptography()


def make_csr(private_key: CertificateIssuerPrivateKeyTypes, domains: Sequence[str],
             common_name: Optional[str] = None,
             subject: Optional[x509.Name] = None) -> x509.CertificateSigningRequest:
    """Generate a CSR containing domains as subjectAltNames.

    :param private_key: Key the CSR is signed with.
    :param list domains: DNS names to include in subjectAltNames of CSR.
    :param str common_name: Subject CN, defaults to the first domain.
    :param cryptography.x509.Name subject: Full subject. Takes precedence
        over ``common_name``.

    :rtype: `cryptography.x509.CertificateSigningRequest`

    """
    if not domains:
        raise ValueError("At least one domain is required")
    if subject is None:
        subject = x509.Name([x509.NameAttribute(
            NameOID.COMMON_NAME, common_name or domains[0])])
    builder = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(subject)
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(domain) for domain in domains]),
            critical=False,
        )
    )
    return builder.sign(private_key, hashes.SHA256())


def get_names_from_subject_and_extensions(
    subject: x509.Name, exts: x509.Extensions
) -> List[str]:
    """Gets all DNS SAN names as well as the first Common Name from subject.

    :param subject: Name of the x509 object, which may include Common Name
    :type subject: `cryptography.x509.Name`
    :param exts: Extensions of the x509 object, which may include SANs
    :type exts: `cryptography.x509.Extensions`

    :returns: List of DNS Subject Alternative Names and first Common Name
    :rtype: `list` of `str`

    """
    # We know these are always `str` because `bytes` is only possible for
    # other OIDs.
    cns = [str(c.value) for c in subject.get_attributes_for_oid(NameOID.COMMON_NAME)]
    try:
        san_ext = exts.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        dns_names = []
    else:
        dns_names = san_ext.value.get_values_for_type(x509.DNSName)

    if not cns:
        return dns_names
    # Only the first CN is included.
    return [cns[0]] + [d for d in dns_names if d != cns[0]]


def make_self_signed_cert(private_key: CertificateIssuerPrivateKeyTypes,
                          domains: List[str],
                          not_before: Optional[datetime.datetime] = None,
                          validity: datetime.timedelta = datetime.timedelta(days=7),
                          force_san: bool = True) -> x509.Certificate:
    """Generate new self-signed certificate.

    If more than one domain is provided, all of the domains are put into
    ``subjectAltName`` X.509 extension and first domain is set as the
    subject CN, unless it is longer than 64 characters. If only one
    domain is provided no ``subjectAltName`` extension is used, unless
    `force_san` is ``True`` or the domain does not fit in the CN.

    :param private_key: Key the certificate is issued for and signed with.
    :type domains: `list` of `str`
    :param bool force_san:

    :rtype: `cryptography.x509.Certificate`

    """
    assert domains, "Must provide one or more hostnames for the cert."

    if len(domains[0]) <= _MAX_CN_LENGTH:
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])])
    else:
        # Names longer than the CN upper bound only go in subjectAltName
        name = x509.Name([])
        force_san = True
    if not_before is None:
        not_before = _now()

    builder = (
        x509.CertificateBuilder()
        .serial_number(x509.random_serial_number())
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .not_valid_before(not_before)
        .not_valid_after(not_before + validity)
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
    )
    if force_san or len(domains) > 1:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(domain) for domain in domains]),
            critical=False,
        )
    return builder.sign(private_key, hashes.SHA256())


def dump_cryptography_chain(
    chain: Sequence[x509.Certificate],
    encoding: serialization.Encoding = serialization.Encoding.PEM,
) -> bytes:
    """Dump certificate chain into a bundle.

    :param list chain: List of `cryptography.x509.Certificate`.

    :returns: certificate chain bundle
    :rtype: bytes

    """
    # assumes that cryptography's public_bytes includes the ending
    # newline character
    return b"".join(cert.public_bytes(encoding) for cert in chain)


def _now() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.timezone.utc)
