"""ACME-specific JWS.

The JWS implementation in josepy only implements the base JOSE standard. In
order to support the header fields used by ACME, this module defines some
ACME-specific classes that layer on top of josepy, and the helpers that
bind an account key to a signature algorithm.
"""
from typing import Any
from typing import Optional

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric import rsa
import josepy as jose

from acmeclient import errors

EC_ALGORITHMS = {
    'secp256r1': jose.ES256,
    'secp384r1': jose.ES384,
    'secp521r1': jose.ES512,
}


class Header(jose.Header):
    """ACME-specific JOSE Header. Implements nonce, kid, and url.
    """
    nonce: Optional[bytes] = jose.field('nonce', omitempty=True, encoder=jose.encode_b64jose)
    kid: Optional[str] = jose.field('kid', omitempty=True)  # type: ignore[assignment]
    url: Optional[str] = jose.field('url', omitempty=True)

    # Mypy does not understand the josepy magic happening here, and falsely claims
    # that nonce is redefined. Let's ignore the type check here.
    @nonce.decoder  # type: ignore[no-redef,attr-defined,union-attr]
    def nonce(value: str) -> bytes:  # type: ignore[misc]  # pylint: disable=no-self-argument,missing-function-docstring
        try:
            return jose.decode_b64jose(value)
        except jose.DeserializationError as error:
            raise jose.DeserializationError("Invalid nonce: {0}".format(error))


class Signature(jose.Signature):
    """ACME-specific Signature. Uses ACME-specific Header for customer fields."""
    __slots__ = jose.Signature._orig_slots  # type: ignore[attr-defined]  # pylint: disable=protected-access,no-member

    header_cls = Header
    header: Header = jose.field(
        'header', omitempty=True, default=header_cls(),
        decoder=header_cls.from_json)


class JWS(jose.JWS):
    """ACME-specific JWS. Includes nonce, url, and kid in protected header."""
    signature_cls = Signature
    __slots__ = jose.JWS._orig_slots  # type: ignore[attr-defined]  # pylint: disable=protected-access

    @classmethod
    # type: ignore[override]  # pylint: disable=arguments-differ
    def sign(cls, payload: bytes, key: jose.JWK, alg: jose.JWASignature, nonce: Optional[bytes],
             url: Optional[str] = None, kid: Optional[str] = None) -> jose.JWS:
        # jwk and kid are mutually exclusive, so only include a jwk field
        # if kid is not provided.
        include_jwk = kid is None
        return super().sign(payload, key=key, alg=alg,
                            protect=frozenset(['nonce', 'url', 'kid', 'jwk', 'alg']),
                            nonce=nonce, url=url, kid=kid,
                            include_jwk=include_jwk)


def jwk_from_key(key: Any) -> jose.JWK:
    """Wrap a private key in a `josepy.JWK`.

    :param key: `josepy.JWK`, `cryptography` RSA or EC private key, or
        PEM/DER encoded private key bytes.

    :raises .UnsupportedKeyType: if the key cannot sign ACME requests.

    """
    if isinstance(key, jose.JWK):
        return key
    if isinstance(key, bytes):
        try:
            return jose.JWK.load(key)
        except (ValueError, TypeError, jose.Error) as error:
            raise errors.UnsupportedKeyType(error)
    if isinstance(key, rsa.RSAPrivateKey):
        return jose.JWKRSA(key=key)
    if isinstance(key, ec.EllipticCurvePrivateKey):
        return jose.JWKEC(key=key)
    raise errors.UnsupportedKeyType(
        'Unsupported key type: {0}'.format(type(key).__name__))


def alg_for_key(key: jose.JWK) -> jose.JWASignature:
    """Pick the JWS signature algorithm matching the key type.

    :raises .UnsupportedKeyType: for keys other than RSA and NIST EC curves.

    """
    if isinstance(key, jose.JWKRSA):
        return jose.RS256
    if isinstance(key, jose.JWKEC):
        curve = key.key.curve.name
        try:
            return EC_ALGORITHMS[curve]
        except KeyError:
            raise errors.UnsupportedKeyType('Unsupported curve: {0}'.format(curve))
    raise errors.UnsupportedKeyType(
        'Unsupported key type: {0}'.format(type(key).__name__))
