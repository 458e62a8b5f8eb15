"""CCA attestation token: a tagged collection of a platform and a realm token.

::

    399({
        44234: bstr .cbor COSE_Sign1(platform claims),   ; signed with the IAK
        44241: bstr .cbor COSE_Sign1(realm claims),      ; signed with the RAK
    })

The realm token carries the RAK public key in its claims; the platform
challenge binds the two halves together by carrying the hash of that key.
"""
from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Any, Tuple

import cbor2
from cryptography.hazmat.primitives.asymmetric import ec

from ..crypto.cose import Sign1Message, decode_sign1, sign1, verify1
from ..crypto.keys import Signer, Verifier, verifier_for_public_key
from ..errors import ClaimsError, KeyResolutionError, MalformedTokenError, VerificationError
from .model import CcaClaims, PlatformClaims, RealmClaims


CCA_COLLECTION_TAG = 399
CCA_PLATFORM_LABEL = 44234
CCA_REALM_LABEL = 44241

_CURVES_BY_POINT_SIZE = {
    65: ec.SECP256R1,
    97: ec.SECP384R1,
    133: ec.SECP521R1,
}


def _decode_payload(msg: Sign1Message, what: str) -> Any:
    try:
        payload = cbor2.loads(msg.payload)
    except (cbor2.CBORDecodeError, ValueError) as e:
        raise MalformedTokenError(f"{what} payload is not valid CBOR: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedTokenError(f"{what} payload must be a CBOR map")
    return payload


def realm_key_verifier(realm: RealmClaims) -> Verifier:
    """Build a verifier from the RAK public key embedded in the realm claims."""
    point = realm.public_key or b""
    curve = _CURVES_BY_POINT_SIZE.get(len(point))
    if curve is None:
        raise VerificationError(f"realm public key: unexpected point size {len(point)}")
    try:
        key = ec.EllipticCurvePublicKey.from_encoded_point(curve(), point)
    except ValueError as e:
        raise VerificationError(f"realm public key: {e}") from e
    return verifier_for_public_key(key)


@dataclass(frozen=True)
class CcaEvidence:
    claims: CcaClaims
    platform_message: Sign1Message
    realm_message: Sign1Message
    encoded: bytes

    @property
    def challenge(self) -> bytes | None:
        return self.claims.realm.challenge

    @classmethod
    def sign(cls, claims: CcaClaims, platform_signer: Signer, realm_signer: Signer) -> "CcaEvidence":
        """Sign both halves independently and compose the collection."""
        if claims.strict:
            claims.validate(expect_nonce=True)
        platform_tag = sign1(claims.platform.to_cbor(), platform_signer)
        realm_tag = sign1(claims.realm.to_cbor(), realm_signer)
        collection = cbor2.CBORTag(
            CCA_COLLECTION_TAG,
            {
                CCA_PLATFORM_LABEL: cbor2.dumps(platform_tag, canonical=True),
                CCA_REALM_LABEL: cbor2.dumps(realm_tag, canonical=True),
            },
        )
        encoded = cbor2.dumps(collection, canonical=True)
        return cls(claims, decode_sign1(platform_tag), decode_sign1(realm_tag), encoded)

    @classmethod
    def decode(cls, buf: bytes) -> "CcaEvidence":
        try:
            obj = cbor2.loads(buf)
        except (cbor2.CBORDecodeError, ValueError) as e:
            raise MalformedTokenError(f"CCA token is not valid CBOR: {e}") from e
        if not isinstance(obj, cbor2.CBORTag) or obj.tag != CCA_COLLECTION_TAG:
            raise MalformedTokenError(f"CCA token must be a CBOR tag {CCA_COLLECTION_TAG} collection")
        coll = obj.value
        if not isinstance(coll, dict):
            raise MalformedTokenError("CCA collection must be a CBOR map")
        missing = [k for k in (CCA_PLATFORM_LABEL, CCA_REALM_LABEL) if k not in coll]
        if missing:
            raise MalformedTokenError(f"CCA collection is missing entries {missing}")
        platform_msg, realm_msg = cls._split(coll)
        try:
            platform = PlatformClaims.from_cbor(_decode_payload(platform_msg, "platform token"))
            realm = RealmClaims.from_cbor(_decode_payload(realm_msg, "realm token"))
            claims = CcaClaims(platform=platform, realm=realm)
            claims.validate(expect_nonce=True)
        except ClaimsError as e:
            raise MalformedTokenError(f"CCA claims: {e}") from e
        return cls(claims, platform_msg, realm_msg, bytes(buf))

    @staticmethod
    def _split(coll: dict) -> Tuple[Sign1Message, Sign1Message]:
        out = []
        for label, what in ((CCA_PLATFORM_LABEL, "platform"), (CCA_REALM_LABEL, "realm")):
            try:
                out.append(decode_sign1(coll[label]))
            except MalformedTokenError as e:
                raise MalformedTokenError(f"{what} token: {e}") from e
        return out[0], out[1]

    def verify(self, iak_verifier: Verifier) -> None:
        """Check both signatures and the platform/realm binding."""
        try:
            verify1(self.platform_message, iak_verifier)
        except VerificationError as e:
            raise VerificationError(f"platform token: {e}") from e
        try:
            rak = realm_key_verifier(self.claims.realm)
        except KeyResolutionError as e:
            raise VerificationError(f"realm public key: {e}") from e
        try:
            verify1(self.realm_message, rak)
        except VerificationError as e:
            raise VerificationError(f"realm token: {e}") from e
        try:
            digest = self.claims.realm.public_key_digest()
        except ClaimsError as e:
            raise VerificationError(str(e)) from e
        if not hmac.compare_digest(digest, self.claims.platform.challenge or b""):
            raise VerificationError(
                "platform challenge does not match the hash of the realm public key"
            )


__all__ = ["CcaEvidence", "realm_key_verifier"]
