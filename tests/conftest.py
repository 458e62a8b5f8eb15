import base64
import hashlib
import json

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jwcrypto import jwk


# P-256 signing key used throughout the PSA tests
P256_JWK = json.dumps({
    "kty": "EC",
    "crv": "P-256",
    "x": "MKBCTNIcKUSDii11ySs3526iDZ8AiTo7Tu6KPAqv7D4",
    "y": "4Etl6SRW2YiLUrN5vfvVHuhp7x8PxltmWWlbbM4IFyM",
    "d": "870MB6gfuTJ4HtUnUvYMyJpr5eUZNP4Bk43bVdj3eAE",
})

PSA_P2_CLAIMS = {
    "profile": "http://arm.com/psa/2.0.0",
    "partition-id": 1,
    "security-life-cycle": 12288,
    "implementation-id": "UFFSU1RVVldQUVJTVFVWV1BRUlNUVVZXUFFSU1RVVlc=",
    "boot-seed": "3q2+796tvu/erb7v3q2+796tvu/erb7v3q2+796tvu8=",
    "hardware-version": "1234567890123",
    "software-components": [
        {
            "measurement-type": "BL",
            "measurement-value": "AAECBAABAgQAAQIEAAECBAABAgQAAQIEAAECBAABAgQ=",
            "signer-id": "UZIA/1GSAP9RkgD/UZIA/1GSAP9RkgD/UZIA/1GSAP8=",
        },
        {
            "measurement-type": "PRoT",
            "measurement-value": "BQYHCAUGBwgFBgcIBQYHCAUGBwgFBgcIBQYHCAUGBwg=",
            "signer-id": "UZIA/1GSAP9RkgD/UZIA/1GSAP9RkgD/UZIA/1GSAP8=",
        },
    ],
    "instance-id": "AaChoqOgoaKjoKGio6ChoqOgoaKjoKGio6ChoqOgoaKj",
    "verification-service-indicator": "https://psa-verifier.org",
}

PSA_NONCE = bytes(range(4)) * 8


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


def generate_jwk(crv: str = "P-256") -> str:
    return jwk.JWK.generate(kty="EC", crv=crv).export(private_key=True)


def public_jwk(private: str) -> str:
    return jwk.JWK.from_json(private).export_public()


@pytest.fixture
def p256_key() -> str:
    return P256_JWK


@pytest.fixture
def psa_claims() -> dict:
    return json.loads(json.dumps(PSA_P2_CLAIMS))


@pytest.fixture
def psa_claims_json() -> bytes:
    return json.dumps(PSA_P2_CLAIMS).encode()


@pytest.fixture
def psa_claims_with_nonce_json() -> bytes:
    return json.dumps({**PSA_P2_CLAIMS, "nonce": b64(PSA_NONCE)}).encode()


@pytest.fixture
def cca_keys() -> dict:
    """PAK on P-256, RAK on P-384; the RAK point ends up in the realm claims."""
    rak = ec.generate_private_key(ec.SECP384R1())
    point = rak.public_key().public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )
    pak = generate_jwk("P-256")
    return {
        "pak": pak,
        "pak_public": public_jwk(pak),
        "rak": jwk.JWK.from_pyca(rak).export(private_key=True),
        "rak_point": point,
    }


def make_cca_claims(rak_point: bytes, challenge: bytes | None = None) -> dict:
    realm = {
        "cca-realm-personalization-value": b64(b"\xab" * 64),
        "cca-realm-initial-measurement": b64(b"\x01" * 32),
        "cca-realm-extensible-measurements": [b64(bytes([i]) * 32) for i in range(4)],
        "cca-realm-hash-algo-id": "sha-256",
        "cca-realm-public-key": b64(rak_point),
        "cca-realm-public-key-hash-algo-id": "sha-256",
    }
    if challenge is not None:
        realm["cca-realm-challenge"] = b64(challenge)
    platform = {
        "cca-platform-profile": "http://arm.com/CCA-SSD/1.0.0",
        "cca-platform-challenge": b64(hashlib.sha256(rak_point).digest()),
        "cca-platform-implementation-id": b64(b"\x7f" * 32),
        "cca-platform-instance-id": b64(b"\x01" + b"\xa0" * 32),
        "cca-platform-config": b64(b"\xcf\xcf\xcf\xcf"),
        "cca-platform-lifecycle": 12288,
        "cca-platform-sw-components": [
            {
                "measurement-type": "RSE_BL1_2",
                "measurement-value": b64(b"\x9a" * 32),
                "signer-id": b64(b"\x53" * 32),
                "hash-algo-id": "sha-256",
            }
        ],
        "cca-platform-service-indicator": "https://veraison.example/.well-known/veraison/verification",
        "cca-platform-hash-algo-id": "sha-256",
    }
    return {"cca-platform-token": platform, "cca-realm-delegated-token": realm}


@pytest.fixture
def cca_claims_json(cca_keys) -> bytes:
    return json.dumps(make_cca_claims(cca_keys["rak_point"])).encode()


@pytest.fixture
def cca_claims_with_challenge_json(cca_keys) -> bytes:
    return json.dumps(make_cca_claims(cca_keys["rak_point"], b"\x42" * 64)).encode()
