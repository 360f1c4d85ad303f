"""ACME JSON fields."""
import datetime
import logging
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding
import josepy as jose
import pyrfc3339

logger = logging.getLogger(__name__)


class Fixed(jose.Field):
    """Fixed field."""

    def __init__(self, json_name: str, value: Any) -> None:
        self.value = value
        super().__init__(
            json_name=json_name, default=value, omitempty=False)

    def decode(self, value: Any) -> Any:
        if value != self.value:
            raise jose.DeserializationError(f'Expected {self.value!r}')
        return self.value

    def encode(self, value: Any) -> Any:
        if value != self.value:
            logger.warning(
                'Overriding fixed field (%s) with %r', self.json_name, value)
        return value


class RFC3339Field(jose.Field):
    """RFC3339 field encoder/decoder.

    Handles decoding/encoding between RFC3339 strings and aware (not
    naive) `datetime.datetime` objects
    (e.g. ``datetime.datetime.now(datetime.timezone.utc)``).

    """

    @classmethod
    def default_encoder(cls, value: datetime.datetime) -> str:
        return pyrfc3339.generate(value)

    @classmethod
    def default_decoder(cls, value: str) -> datetime.datetime:
        try:
            return pyrfc3339.parse(value)
        except ValueError as error:
            raise jose.DeserializationError(error)


def encode_der_cert(cert: x509.Certificate) -> str:
    """Encode certificate as JOSE Base-64 DER."""
    return jose.encode_b64jose(cert.public_bytes(Encoding.DER))


def decode_der_cert(b64der: str) -> x509.Certificate:
    """Decode JOSE Base-64 DER-encoded certificate."""
    try:
        return x509.load_der_x509_certificate(jose.decode_b64jose(b64der))
    except ValueError as error:
        raise jose.DeserializationError(error)


def encode_der_csr(csr: x509.CertificateSigningRequest) -> str:
    """Encode CSR as JOSE Base-64 DER."""
    return jose.encode_b64jose(csr.public_bytes(Encoding.DER))


def decode_der_csr(b64der: str) -> x509.CertificateSigningRequest:
    """Decode JOSE Base-64 DER-encoded CSR."""
    try:
        return x509.load_der_x509_csr(jose.decode_b64jose(b64der))
    except ValueError as error:
        raise jose.DeserializationError(error)


def fixed(json_name: str, value: Any) -> Any:
    """Generates a type-friendly Fixed field."""
    return Fixed(json_name, value)


def resource(resource_type: str) -> Any:
    """Generates a fixed ``resource`` field, required by ACME v1 messages."""
    return fixed('resource', resource_type)


def rfc3339(json_name: str, omitempty: bool = False) -> Any:
    """Generates a type-friendly RFC3339 field."""
    return RFC3339Field(json_name, omitempty=omitempty)


def der_cert(json_name: str) -> Any:
    """Generates a certificate field serialized as Base-64 DER."""
    return jose.field(json_name, encoder=encode_der_cert, decoder=decode_der_cert)


def der_csr(json_name: str) -> Any:
    """Generates a CSR field serialized as Base-64 DER."""
    return jose.field(json_name, encoder=encode_der_csr, decoder=decode_der_csr)
