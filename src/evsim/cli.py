from __future__ import annotations

import argparse
import sys

from .cca import cli as cca_cli
from .config import load_settings
from .errors import ConfigError, EvidenceError
from .psa import cli as psa_cli
from .utils.logging import get_logger, set_level


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser("evsim", description="Attester / relying-party emulator")
    p.add_argument("--config", help="YAML config file (default: ./evsim.yaml if present)")
    p.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)
    psa_cli.register(sub)
    cca_cli.register(sub)
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    log = get_logger()
    try:
        settings = load_settings(args.config)
        try:
            set_level("DEBUG" if args.verbose else settings.log_level)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        return args.func(args, settings)
    except (EvidenceError, OSError) as e:
        log.debug("command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
