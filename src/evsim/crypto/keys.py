"""Signing-key resolution.

Keys come in as JSON Web Keys. A key is parsed once, tagged with an explicit
``KeyKind`` and then mapped to exactly one COSE signature algorithm:

  EC P-256  -> ES256
  EC P-384  -> ES384
  EC P-521  -> ES512
  RSA       -> PS256

Anything else (other curves, OKP/oct keys, ...) is an error. There is no
fallback algorithm: a wrong default would silently produce evidence no
verifier accepts.

Signatures are produced in COSE form: raw ``r || s`` for ECDSA, PSS with a
digest-length salt for RSA.
"""
from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from typing import Any, Dict, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)
from jwcrypto import jwk
from jwcrypto.common import JWException

from ..errors import MalformedKeyError, UnsupportedCurveError, UnsupportedKeyTypeError


PrivateKey = Union[ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey]
PublicKey = Union[ec.EllipticCurvePublicKey, rsa.RSAPublicKey]


class SignatureAlgorithm(enum.Enum):
    """COSE algorithm identifiers supported for evidence signing."""

    ES256 = -7
    ES384 = -35
    ES512 = -36
    PS256 = -37

    @property
    def hash_algorithm(self) -> hashes.HashAlgorithm:
        return _HASHES[self]()

    @classmethod
    def from_cose(cls, value: Any) -> "SignatureAlgorithm":
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"unsupported COSE algorithm {value!r}") from None


_HASHES = {
    SignatureAlgorithm.ES256: hashes.SHA256,
    SignatureAlgorithm.ES384: hashes.SHA384,
    SignatureAlgorithm.ES512: hashes.SHA512,
    SignatureAlgorithm.PS256: hashes.SHA256,
}

# cryptography curve name -> algorithm
_CURVES: Dict[str, SignatureAlgorithm] = {
    "secp256r1": SignatureAlgorithm.ES256,
    "secp384r1": SignatureAlgorithm.ES384,
    "secp521r1": SignatureAlgorithm.ES512,
}


class KeyKind(enum.Enum):
    EC_PRIVATE = "EC private key"
    EC_PUBLIC = "EC public key"
    RSA_PRIVATE = "RSA private key"
    RSA_PUBLIC = "RSA public key"


@dataclass(frozen=True)
class ParsedKey:
    kind: KeyKind
    key: Any


def _classify(key: Any) -> ParsedKey:
    if isinstance(key, ec.EllipticCurvePrivateKey):
        return ParsedKey(KeyKind.EC_PRIVATE, key)
    if isinstance(key, ec.EllipticCurvePublicKey):
        return ParsedKey(KeyKind.EC_PUBLIC, key)
    if isinstance(key, rsa.RSAPrivateKey):
        return ParsedKey(KeyKind.RSA_PRIVATE, key)
    if isinstance(key, rsa.RSAPublicKey):
        return ParsedKey(KeyKind.RSA_PUBLIC, key)
    raise UnsupportedKeyTypeError(type(key).__name__)


def parse_key(raw: bytes | str) -> ParsedKey:
    """Parse a JWK description into a tagged key value."""
    try:
        obj = json.loads(raw)
    except ValueError as e:
        raise MalformedKeyError(f"failed to parse key: {e}") from e
    if not isinstance(obj, dict):
        raise MalformedKeyError("failed to parse key: a JWK must be a JSON object")
    kty = obj.get("kty")
    if not kty:
        raise MalformedKeyError("failed to parse key: missing key type (kty)")
    if kty not in ("EC", "RSA"):
        raise UnsupportedKeyTypeError(str(kty))
    try:
        key = jwk.JWK(**obj)
        op = "sign" if key.has_private else "verify"
        return _classify(key.get_op_key(op))
    except (JWException, ValueError, TypeError) as e:
        raise MalformedKeyError(f"failed to parse key: {e}") from e


def _curve_algorithm(curve: ec.EllipticCurve) -> SignatureAlgorithm:
    alg = _CURVES.get(curve.name)
    if alg is None:
        raise UnsupportedCurveError(curve.name)
    return alg


class Verifier:
    """Public-key capability bound to a single algorithm."""

    def __init__(self, algorithm: SignatureAlgorithm, key: PublicKey) -> None:
        self.algorithm = algorithm
        self.key = key

    def verify(self, data: bytes, signature: bytes) -> None:
        """Raise ``cryptography.exceptions.InvalidSignature`` on mismatch."""
        h = self.algorithm.hash_algorithm
        if isinstance(self.key, rsa.RSAPublicKey):
            self.key.verify(
                signature,
                data,
                padding.PSS(mgf=padding.MGF1(h), salt_length=padding.PSS.DIGEST_LENGTH),
                h,
            )
            return
        size = (self.key.curve.key_size + 7) // 8
        if len(signature) != 2 * size:
            raise InvalidSignature(f"ECDSA signature must be {2 * size} bytes, got {len(signature)}")
        r = int.from_bytes(signature[:size], "big")
        s = int.from_bytes(signature[size:], "big")
        self.key.verify(encode_dss_signature(r, s), data, ec.ECDSA(h))


class Signer:
    """Private-key capability bound to a single algorithm."""

    def __init__(self, algorithm: SignatureAlgorithm, key: PrivateKey) -> None:
        self.algorithm = algorithm
        self._key = key

    def sign(self, data: bytes) -> bytes:
        h = self.algorithm.hash_algorithm
        if isinstance(self._key, rsa.RSAPrivateKey):
            return self._key.sign(
                data,
                padding.PSS(mgf=padding.MGF1(h), salt_length=padding.PSS.DIGEST_LENGTH),
                h,
            )
        size = (self._key.curve.key_size + 7) // 8
        r, s = decode_dss_signature(self._key.sign(data, ec.ECDSA(h)))
        return r.to_bytes(size, "big") + s.to_bytes(size, "big")

    def verifier(self) -> Verifier:
        return Verifier(self.algorithm, self._key.public_key())


def resolve_signer(raw: bytes | str) -> Signer:
    """Turn a private JWK into a signer bound to the algorithm its curve dictates."""
    parsed = parse_key(raw)
    if parsed.kind is KeyKind.EC_PRIVATE:
        return Signer(_curve_algorithm(parsed.key.curve), parsed.key)
    if parsed.kind is KeyKind.RSA_PRIVATE:
        return Signer(SignatureAlgorithm.PS256, parsed.key)
    raise UnsupportedKeyTypeError(
        parsed.kind.value, f"signing requires a private key, got {parsed.kind.value}"
    )


def verifier_for_public_key(key: Any) -> Verifier:
    """Map an already-parsed public key to its verifier."""
    parsed = _classify(key)
    if parsed.kind is KeyKind.EC_PUBLIC:
        return Verifier(_curve_algorithm(parsed.key.curve), parsed.key)
    if parsed.kind is KeyKind.RSA_PUBLIC:
        return Verifier(SignatureAlgorithm.PS256, parsed.key)
    raise UnsupportedKeyTypeError(
        parsed.kind.value, f"expected a public key, got {parsed.kind.value}"
    )


def resolve_verifier(raw: bytes | str) -> Verifier:
    """Public-key path: accepts public JWKs, or private ones reduced to their public half."""
    parsed = parse_key(raw)
    if parsed.kind in (KeyKind.EC_PRIVATE, KeyKind.RSA_PRIVATE):
        return verifier_for_public_key(parsed.key.public_key())
    return verifier_for_public_key(parsed.key)


__all__ = [
    "KeyKind",
    "ParsedKey",
    "SignatureAlgorithm",
    "Signer",
    "Verifier",
    "parse_key",
    "resolve_signer",
    "resolve_verifier",
    "verifier_for_public_key",
]
