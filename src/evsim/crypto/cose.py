from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

import cbor2
from cryptography.exceptions import InvalidSignature

from ..errors import MalformedTokenError, SigningError, VerificationError
from .keys import SignatureAlgorithm, Signer, Verifier


COSE_SIGN1_TAG = 18
HDR_ALG = 1


def _sig_structure(protected_bstr: bytes, payload: bytes) -> bytes:
    # Sig_structure = ["Signature1", protected, external_aad:bstr, payload]
    arr = ["Signature1", protected_bstr, b"", payload]
    return cbor2.dumps(arr, canonical=True)


@dataclass(frozen=True)
class Sign1Message:
    protected_bstr: bytes
    protected: Dict[Any, Any]
    unprotected: Dict[Any, Any]
    payload: bytes
    signature: bytes

    @property
    def algorithm(self) -> SignatureAlgorithm:
        try:
            return SignatureAlgorithm.from_cose(self.protected.get(HDR_ALG))
        except ValueError as e:
            raise MalformedTokenError(str(e)) from e


def sign1(payload: bytes, signer: Signer) -> cbor2.CBORTag:
    """Wrap ``payload`` in a tagged COSE_Sign1 signed by ``signer``.

    Only the ``alg`` parameter goes into the protected header; the
    unprotected header is left empty.
    """
    protected_bstr = cbor2.dumps({HDR_ALG: signer.algorithm.value}, canonical=True)
    to_sign = _sig_structure(protected_bstr, payload)
    try:
        sig = signer.sign(to_sign)
    except (ValueError, TypeError) as e:
        raise SigningError(f"{signer.algorithm.name} signing failed: {e}") from e
    return cbor2.CBORTag(COSE_SIGN1_TAG, [protected_bstr, {}, payload, sig])


def decode_sign1(obj: Any) -> Sign1Message:
    """Accept either encoded bytes or an already-decoded CBOR item."""
    if isinstance(obj, (bytes, bytearray)):
        try:
            obj = cbor2.loads(obj)
        except (cbor2.CBORDecodeError, ValueError) as e:
            raise MalformedTokenError(f"COSE_Sign1 is not valid CBOR: {e}") from e
    if isinstance(obj, cbor2.CBORTag):
        if obj.tag != COSE_SIGN1_TAG:
            raise MalformedTokenError(f"unexpected CBOR tag {obj.tag}, want {COSE_SIGN1_TAG}")
        obj = obj.value
    if not (isinstance(obj, list) and len(obj) == 4):
        raise MalformedTokenError("bad COSE_Sign1 structure")
    protected_bstr, unprot, payload, sig = obj
    if not isinstance(protected_bstr, (bytes, bytearray)):
        raise MalformedTokenError("protected header must be bstr")
    if not isinstance(payload, (bytes, bytearray)) or not isinstance(sig, (bytes, bytearray)):
        raise MalformedTokenError("payload and signature must be bstr")
    if not isinstance(unprot, dict):
        raise MalformedTokenError("unprotected header must be a map")
    try:
        prot = cbor2.loads(protected_bstr) if protected_bstr else {}
    except (cbor2.CBORDecodeError, ValueError) as e:
        raise MalformedTokenError(f"protected header is not valid CBOR: {e}") from e
    if not isinstance(prot, dict):
        raise MalformedTokenError("protected header must be a map")
    return Sign1Message(bytes(protected_bstr), prot, unprot, bytes(payload), bytes(sig))


def verify1(msg: Sign1Message, verifier: Verifier) -> None:
    alg = msg.algorithm
    if alg is not verifier.algorithm:
        raise VerificationError(
            f"token signed with {alg.name}, key requires {verifier.algorithm.name}"
        )
    to_verify = _sig_structure(msg.protected_bstr, msg.payload)
    try:
        verifier.verify(to_verify, msg.signature)
    except InvalidSignature as e:
        raise VerificationError("bad signature") from e
