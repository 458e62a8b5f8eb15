import json

import httpx
import pytest

from evsim import common
from evsim.builder import CCA_MEDIA_TYPE
from evsim.cli import main
from evsim.psa.model import PSA_PROFILE_1
from evsim.session import ChallengeResponseSession

from conftest import P256_JWK, public_jwk
from test_session import FakeVerifier


@pytest.fixture(autouse=True)
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for var in ("EVSIM_API_SERVER", "EVSIM_INSECURE", "EVSIM_CA_CERTS", "EVSIM_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    (tmp_path / "es256.jwk").write_text(P256_JWK)
    (tmp_path / "es256.pub.jwk").write_text(public_jwk(P256_JWK))
    return tmp_path


@pytest.fixture
def fake_verifier(monkeypatch):
    fake = FakeVerifier()

    def session(**kw):
        client = httpx.Client(transport=httpx.MockTransport(fake))
        kw["poll_interval"] = 0
        return ChallengeResponseSession(client=client, **kw)

    monkeypatch.setattr(common, "ChallengeResponseSession", session)
    return fake


def test_psa_create_check_print(workdir, psa_claims_with_nonce_json, capsys):
    (workdir / "claims.json").write_bytes(psa_claims_with_nonce_json)
    assert main(["psa", "create", "-c", "claims.json", "-k", "es256.jwk"]) == 0
    assert (workdir / "claims.cbor").exists()
    assert "successfully created" in capsys.readouterr().out

    assert main(["psa", "check", "-t", "claims.cbor", "-k", "es256.pub.jwk", "-c", "out.json"]) == 0
    assert "verified" in capsys.readouterr().out
    saved = json.loads((workdir / "out.json").read_text())
    assert saved["nonce"] == json.loads(psa_claims_with_nonce_json)["nonce"]

    assert main(["psa", "print", "-t", "claims.cbor"]) == 0
    printed = json.loads(capsys.readouterr().out)
    assert printed["profile"] == "http://arm.com/psa/2.0.0"


def test_psa_create_explicit_token_name(workdir, psa_claims_with_nonce_json):
    (workdir / "claims.json").write_bytes(psa_claims_with_nonce_json)
    assert main(["psa", "create", "-c", "claims.json", "-k", "es256.jwk", "-t", "my.cbor"]) == 0
    assert (workdir / "my.cbor").exists()
    assert not (workdir / "claims.cbor").exists()


def test_psa_create_profile_mismatch_writes_nothing(workdir, psa_claims_with_nonce_json, capsys):
    (workdir / "claims.json").write_bytes(psa_claims_with_nonce_json)
    rc = main(["psa", "create", "-c", "claims.json", "-k", "es256.jwk", "-p", PSA_PROFILE_1])
    assert rc == 1
    assert "profile mismatch" in capsys.readouterr().err
    assert not (workdir / "claims.cbor").exists()


def test_psa_create_invalid_claims_needs_allow_invalid(workdir, psa_claims_json):
    # no nonce: invalid for a standalone token
    (workdir / "claims.json").write_bytes(psa_claims_json)
    assert main(["psa", "create", "-c", "claims.json", "-k", "es256.jwk"]) == 1
    assert not (workdir / "claims.cbor").exists()
    assert main(["psa", "create", "-c", "claims.json", "-k", "es256.jwk", "-I"]) == 0
    assert (workdir / "claims.cbor").exists()


def test_psa_create_public_key_fails(workdir, psa_claims_with_nonce_json, capsys):
    (workdir / "claims.json").write_bytes(psa_claims_with_nonce_json)
    assert main(["psa", "create", "-c", "claims.json", "-k", "es256.pub.jwk"]) == 1
    assert "error decoding signing key" in capsys.readouterr().err


def test_missing_file(capsys):
    assert main(["psa", "print", "-t", "nope.cbor"]) == 1
    assert "nope.cbor" in capsys.readouterr().err


def test_usage_error():
    with pytest.raises(SystemExit) as ei:
        main(["psa", "create", "-c", "claims.json"])
    assert ei.value.code == 2


def test_psa_verify_as_attester(workdir, psa_claims_json, fake_verifier, capsys):
    (workdir / "claims.json").write_bytes(psa_claims_json)
    rc = main([
        "psa", "verify-as", "attester",
        "-c", "claims.json", "-k", "es256.jwk",
        "-s", "http://veraison.example/challenge-response/v1",
    ])
    assert rc == 0
    assert json.loads(capsys.readouterr().out)["status"] == "complete"
    assert fake_verifier.requests[0].url.params["nonceSize"] == "48"


def test_psa_verify_as_needs_api_server(workdir, psa_claims_json, capsys):
    (workdir / "claims.json").write_bytes(psa_claims_json)
    assert main(["psa", "verify-as", "attester", "-c", "claims.json", "-k", "es256.jwk"]) == 1
    assert "API server" in capsys.readouterr().err


def test_api_server_from_config_file(workdir, psa_claims_json, fake_verifier):
    (workdir / "claims.json").write_bytes(psa_claims_json)
    (workdir / "evsim.yaml").write_text("api-server: http://veraison.example/challenge-response/v1\n")
    assert main(["psa", "verify-as", "attester", "-c", "claims.json", "-k", "es256.jwk", "-n", "32"]) == 0
    assert fake_verifier.requests[0].url.params["nonceSize"] == "32"


def test_psa_verify_as_relying_party(workdir, psa_claims_with_nonce_json, fake_verifier):
    (workdir / "claims.json").write_bytes(psa_claims_with_nonce_json)
    assert main(["psa", "create", "-c", "claims.json", "-k", "es256.jwk"]) == 0
    rc = main([
        "psa", "verify-as", "relying-party", "-t", "claims.cbor",
        "-s", "http://veraison.example/challenge-response/v1",
    ])
    assert rc == 0
    assert fake_verifier.evidence[1] == (workdir / "claims.cbor").read_bytes()


def test_cca_create_check_print(workdir, cca_keys, cca_claims_with_challenge_json, capsys):
    (workdir / "cca.json").write_bytes(cca_claims_with_challenge_json)
    (workdir / "pak.jwk").write_text(cca_keys["pak"])
    (workdir / "rak.jwk").write_text(cca_keys["rak"])
    (workdir / "iak.jwk").write_text(cca_keys["pak_public"])
    assert main(["cca", "create", "-c", "cca.json", "-p", "pak.jwk", "-r", "rak.jwk"]) == 0
    assert (workdir / "cca.cbor").exists()
    capsys.readouterr()

    assert main(["cca", "check", "-t", "cca.cbor", "-k", "iak.jwk"]) == 0
    out = capsys.readouterr().out
    assert "verified" in out and "cca-realm-challenge" in out

    assert main(["cca", "print", "-t", "cca.cbor"]) == 0
    printed = json.loads(capsys.readouterr().out)
    assert set(printed) == {"cca-platform-token", "cca-realm-delegated-token"}

    assert main(["cca", "check", "-t", "cca.cbor", "-k", "es256.pub.jwk"]) == 1


def test_cca_verify_as_attester(workdir, cca_keys, cca_claims_json, fake_verifier):
    fake_verifier.nonce = b"\x09" * 64
    fake_verifier.accept = [CCA_MEDIA_TYPE]
    (workdir / "cca.json").write_bytes(cca_claims_json)
    (workdir / "pak.jwk").write_text(cca_keys["pak"])
    (workdir / "rak.jwk").write_text(cca_keys["rak"])
    rc = main([
        "cca", "verify-as", "attester", "-c", "cca.json", "-p", "pak.jwk", "-r", "rak.jwk",
        "-s", "http://veraison.example/challenge-response/v1",
    ])
    assert rc == 0
    assert fake_verifier.requests[0].url.params["nonceSize"] == "64"
    assert fake_verifier.evidence[0] == CCA_MEDIA_TYPE


def test_check_bad_key_names_key_file(workdir, psa_claims_with_nonce_json, capsys):
    (workdir / "claims.json").write_bytes(psa_claims_with_nonce_json)
    assert main(["psa", "create", "-c", "claims.json", "-k", "es256.jwk"]) == 0
    capsys.readouterr()
    (workdir / "bad.jwk").write_text('{"kty": "EC", "crv": "P-256"}')
    assert main(["psa", "check", "-t", "claims.cbor", "-k", "bad.jwk"]) == 1
    err = capsys.readouterr().err
    assert "bad.jwk" in err and "claims.cbor" in err


@pytest.mark.parametrize("group", ["psa", "cca"])
def test_junk_token_names_token_file(workdir, group, capsys):
    (workdir / "junk.cbor").write_bytes(b"\x01\x02\x03")
    assert main([group, "print", "-t", "junk.cbor"]) == 1
    assert "junk.cbor" in capsys.readouterr().err
    assert main([group, "check", "-t", "junk.cbor", "-k", "es256.pub.jwk"]) == 1
    assert "junk.cbor" in capsys.readouterr().err


def test_bad_claims_names_claims_file(workdir, capsys):
    (workdir / "broken.json").write_text("{not json")
    assert main(["psa", "create", "-c", "broken.json", "-k", "es256.jwk"]) == 1
    assert "broken.json" in capsys.readouterr().err
    assert main(["cca", "create", "-c", "broken.json", "-p", "es256.jwk", "-r", "es256.jwk"]) == 1
    assert "broken.json" in capsys.readouterr().err
