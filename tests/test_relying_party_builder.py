import pytest
from hypothesis import given, strategies as st

from evsim.builder import (
    CCA_MEDIA_TYPE,
    PSA_MEDIA_TYPE,
    CcaAttesterEvidenceBuilder,
    PsaAttesterEvidenceBuilder,
    RelyingPartyEvidenceBuilder,
)
from evsim.crypto.keys import resolve_signer
from evsim.errors import MalformedTokenError, NegotiationError, NonceBindingError
from evsim.loader import load_cca_claims, load_psa_claims

from conftest import P256_JWK, PSA_NONCE

# PSA token produced by an independent implementation (P2 profile, ES256)
PSA_TOKEN = bytes.fromhex(
    "d28443a10126a0590193aa1901097818687474703a2f2f61726d2e636f6d2f7073612f322e302e30"
    "3a000124f8013a000124f91930003a000124fa5820505152535455565750515253545556575051"
    "52535455565750515253545556573a000124fb5820deadbeefdeadbeefdeadbeefdeadbeefdead"
    "beefdeadbeefdeadbeefdeadbeef3a000124fc6d313233343536373839303132333a000124fd82"
    "a30162424c025820000102040001020400010204000102040001020400010204000102040001"
    "0204055820519200ff519200ff519200ff519200ff519200ff519200ff519200ff519200ffa301"
    "6450526f540258200506070805060708050607080506070805060708050607080506070805060708"
    "055820519200ff519200ff519200ff519200ff519200ff519200ff519200ff519200ff0a58200001"
    "020300010203000102030001020300010203000102030001020300010203190100582101a0a1a2"
    "a3a0a1a2a3a0a1a2a3a0a1a2a3a0a1a2a3a0a1a2a3a0a1a2a3a0a1a2a33a00012501781868747470"
    "733a2f2f7073612d76657269666965722e6f726758403fa7e42d972cc800e40aa9cd01e8b4306e"
    "09a18624a06c711a1c19f48745c5cc78e17d8f503f1139a2eceafba7befea2db5d77d550adf0b7"
    "247ec7269f7598b1"
)


def test_psa_token_nonce_captured():
    builder = RelyingPartyEvidenceBuilder.from_psa_token(PSA_TOKEN)
    assert builder.nonce == PSA_NONCE
    assert builder.media_type == PSA_MEDIA_TYPE


def test_replay_is_byte_identical_and_idempotent():
    builder = RelyingPartyEvidenceBuilder.from_psa_token(PSA_TOKEN)
    first = builder.build_evidence(PSA_NONCE, ["a/b", PSA_MEDIA_TYPE])
    second = builder.build_evidence(PSA_NONCE, [PSA_MEDIA_TYPE])
    assert first == (PSA_TOKEN, PSA_MEDIA_TYPE)
    assert second == first


def test_nonce_mismatch_reports_both_values():
    builder = RelyingPartyEvidenceBuilder.from_psa_token(PSA_TOKEN)
    other = b"\xff" * 32
    with pytest.raises(NonceBindingError) as ei:
        builder.build_evidence(other, [PSA_MEDIA_TYPE])
    assert str(ei.value) == f"expecting nonce {PSA_NONCE.hex()}, got {other.hex()}"


@given(st.binary(min_size=1, max_size=64).filter(lambda b: b != PSA_NONCE))
def test_any_other_nonce_is_rejected(nonce):
    builder = RelyingPartyEvidenceBuilder.from_psa_token(PSA_TOKEN)
    with pytest.raises(NonceBindingError):
        builder.build_evidence(nonce, [PSA_MEDIA_TYPE])


def test_negotiation_checked_before_nonce():
    builder = RelyingPartyEvidenceBuilder.from_psa_token(PSA_TOKEN)
    with pytest.raises(NegotiationError):
        builder.build_evidence(b"\x00", [CCA_MEDIA_TYPE])


def test_replays_attester_output(psa_claims_json):
    claims = load_psa_claims(psa_claims_json, expect_nonce=False)
    nonce = b"\x5a" * 64
    token, _ = PsaAttesterEvidenceBuilder(claims, resolve_signer(P256_JWK)).build_evidence(
        nonce, [PSA_MEDIA_TYPE]
    )
    builder = RelyingPartyEvidenceBuilder.from_psa_token(token)
    assert builder.build_evidence(nonce, [PSA_MEDIA_TYPE]) == (token, PSA_MEDIA_TYPE)


def test_cca_token(cca_claims_json, cca_keys):
    claims = load_cca_claims(cca_claims_json, expect_nonce=False)
    attester = CcaAttesterEvidenceBuilder(
        claims, resolve_signer(cca_keys["pak"]), resolve_signer(cca_keys["rak"])
    )
    challenge = b"\x33" * 64
    token, _ = attester.build_evidence(challenge, [CCA_MEDIA_TYPE])

    builder = RelyingPartyEvidenceBuilder.from_cca_token(token)
    assert builder.nonce == challenge
    assert builder.build_evidence(challenge, [CCA_MEDIA_TYPE]) == (token, CCA_MEDIA_TYPE)
    with pytest.raises(NonceBindingError):
        builder.build_evidence(b"\x34" * 64, [CCA_MEDIA_TYPE])
    with pytest.raises(NegotiationError):
        builder.build_evidence(challenge, [PSA_MEDIA_TYPE])


@pytest.mark.parametrize("token", [b"", b"\x00\x01", PSA_TOKEN[:-10]])
def test_bad_tokens(token):
    with pytest.raises(MalformedTokenError):
        RelyingPartyEvidenceBuilder.from_psa_token(token)
