from __future__ import annotations

import argparse
from pathlib import Path

from ..builder import PsaAttesterEvidenceBuilder, RelyingPartyEvidenceBuilder
from ..common import (
    add_session_options,
    default_token_path,
    in_context,
    load_signer,
    read_file,
    run_session,
    session_settings,
)
from ..config import Settings
from ..errors import ProfileMismatchError
from ..loader import LoadMode, load_psa_claims
from ..verifier import verify_psa_token
from .model import NONCE_SIZES, PSA_PROFILE_2, known_profiles
from .token import PsaEvidence


def cmd_create(args: argparse.Namespace, settings: Settings) -> int:
    mode = LoadMode.PERMISSIVE if args.allow_invalid else LoadMode.STRICT
    with in_context(f"loading claims from {args.claims}"):
        claims = load_psa_claims(read_file(args.claims), mode=mode)
    if claims.profile != args.profile:
        raise ProfileMismatchError(args.profile, claims.profile)
    signer = load_signer(args.key, "signing key")
    evidence = PsaEvidence.sign(claims, signer)
    out = Path(args.token) if args.token else default_token_path(args.claims)
    out.write_bytes(evidence.encoded)
    print(f'>> "{out}" successfully created')
    return 0


def cmd_check(args: argparse.Namespace, settings: Settings) -> int:
    token, key = read_file(args.token), read_file(args.key)
    with in_context(f"verifying evidence from {args.token} using key from {args.key}"):
        claims = verify_psa_token(token, key)
    print(f'>> "{args.token}" verified')
    if args.claims:
        Path(args.claims).write_text(claims.to_json() + "\n", encoding="utf-8")
        print(f'>> claims saved to "{args.claims}"')
    else:
        print(">> embedded claims:")
        print(claims.to_json())
    return 0


def cmd_print(args: argparse.Namespace, settings: Settings) -> int:
    with in_context(f"loading evidence from {args.token}"):
        evidence = PsaEvidence.decode(read_file(args.token))
    print(evidence.claims.to_json())
    return 0


def cmd_attester(args: argparse.Namespace, settings: Settings) -> int:
    s = session_settings(args, settings)
    with in_context(f"loading claims from {args.claims}"):
        claims = load_psa_claims(read_file(args.claims), expect_nonce=False)
    signer = load_signer(args.key, "signing key")
    builder = PsaAttesterEvidenceBuilder(claims, signer, profile=args.profile)
    return run_session(builder, s, nonce_size=args.nonce_size)


def cmd_relying_party(args: argparse.Namespace, settings: Settings) -> int:
    s = session_settings(args, settings)
    with in_context(f"loading evidence from {args.token}"):
        builder = RelyingPartyEvidenceBuilder.from_psa_token(read_file(args.token))
    return run_session(builder, s, nonce=builder.nonce)


def register(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser("psa", help="PSA attestation token manipulation")
    psa = p.add_subparsers(dest="psa_cmd", required=True)

    p_create = psa.add_parser("create", help="create a PSA attestation token from claims and a key")
    p_create.add_argument("-c", "--claims", required=True, help="JSON file with the claims to sign")
    p_create.add_argument("-k", "--key", required=True, help="JWK file with the signing key")
    p_create.add_argument("-t", "--token", help="output file (default: <claims basename>.cbor)")
    p_create.add_argument("-p", "--profile", choices=known_profiles(), default=PSA_PROFILE_2)
    p_create.add_argument("-I", "--allow-invalid", dest="allow_invalid", action="store_true",
                          help="skip claims validation (for crafting negative tests)")
    p_create.set_defaults(func=cmd_create)

    p_check = psa.add_parser("check", help="syntactic and signature checks on a PSA token")
    p_check.add_argument("-t", "--token", required=True)
    p_check.add_argument("-k", "--key", required=True, help="JWK file with the public IAK")
    p_check.add_argument("-c", "--claims", help="save extracted claims here (default: stdout)")
    p_check.set_defaults(func=cmd_check)

    p_print = psa.add_parser("print", help="print PSA token claims without checking the signature")
    p_print.add_argument("-t", "--token", required=True)
    p_print.set_defaults(func=cmd_print)

    p_verify = psa.add_parser("verify-as", help="run a challenge-response session")
    roles = p_verify.add_subparsers(dest="role", required=True)

    p_att = roles.add_parser("attester", help="sign fresh evidence for the server's nonce")
    p_att.add_argument("-c", "--claims", required=True)
    p_att.add_argument("-k", "--key", required=True)
    p_att.add_argument("-n", "--nonce-size", dest="nonce_size", type=int,
                       choices=NONCE_SIZES, default=48)
    p_att.add_argument("-p", "--profile", choices=known_profiles(), default=None,
                       help="fail unless the claims carry this profile")
    add_session_options(p_att)
    p_att.set_defaults(func=cmd_attester)

    p_rp = roles.add_parser("relying-party", help="replay an existing token")
    p_rp.add_argument("-t", "--token", required=True)
    add_session_options(p_rp)
    p_rp.set_defaults(func=cmd_relying_party)
