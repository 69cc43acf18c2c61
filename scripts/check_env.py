"""Operator tool for validating token relay configuration before a deploy.

Commands:

``check``
    Load ``AppSettings`` from the env file and report missing or malformed
    values (identity provider URLs, client credentials, redirect URI).
``show``
    Print the effective settings with client and session secrets masked.
``record`` / ``verify``
    Store a SHA256 baseline of the env file and later compare against it, so
    unexpected edits are caught before the relay restarts with them.

Example usages::

    python -m scripts.check_env check --env-file /etc/token-relay/.env
    python -m scripts.check_env record --env-file /etc/token-relay/.env \
        --hash-file /etc/token-relay/.env.sha256
    python -m scripts.check_env verify --env-file /etc/token-relay/.env \
        --hash-file /etc/token-relay/.env.sha256
"""

from __future__ import annotations

import argparse
import hashlib
import json
import sys
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from token_relay.core.config import AppSettings, _load_env_file

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CHECKSUM_ERROR = 3
EXIT_RUNTIME_ERROR = 5

_SECRET_FIELDS = {"client_secret", "secret", "refresh_api_key"}


def _compute_hash(env_file: Path) -> str:
    return hashlib.sha256(env_file.read_bytes()).hexdigest()


def _load_settings(env_file: Path) -> AppSettings:
    _load_env_file(str(env_file))
    return AppSettings(_env_file=str(env_file))  # type: ignore[call-arg]


def _redact(values: Any) -> Any:
    if isinstance(values, dict):
        return {
            key: ("***" if key in _SECRET_FIELDS and value else _redact(value))
            for key, value in values.items()
        }
    return values


def _show_settings(settings: AppSettings) -> int:
    print(json.dumps(_redact(settings.model_dump(mode="json")), indent=2, sort_keys=True))
    return EXIT_OK


def _record_checksum(env_file: Path, hash_file: Path) -> int:
    checksum = _compute_hash(env_file)
    hash_file.write_text(f"{checksum}\n", encoding="utf-8")
    print(f"Recorded checksum to {hash_file} ({checksum})")
    return EXIT_OK


def _verify_checksum(env_file: Path, hash_file: Path) -> int:
    if not hash_file.exists():
        print(
            f"No checksum baseline at {hash_file}; run 'record' first.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    expected = hash_file.read_text(encoding="utf-8").strip()
    actual = _compute_hash(env_file)
    if expected == actual:
        print("Environment checksum OK.")
        return EXIT_OK

    print(
        "Environment checksum mismatch!\n"
        f"  expected: {expected}\n"
        f"  actual:   {actual}",
        file=sys.stderr,
    )
    return EXIT_CHECKSUM_ERROR


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate token relay settings and detect .env drift."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text, needs_hash in (
        ("check", "Validate settings only.", False),
        ("show", "Validate settings and print them with secrets masked.", False),
        ("record", "Validate settings and store the checksum baseline.", True),
        ("verify", "Validate settings and compare against the baseline.", True),
    ):
        subparser = subparsers.add_parser(name, help=help_text)
        subparser.add_argument(
            "--env-file",
            default=".env",
            type=Path,
            help="Path to the environment file (default: .env).",
        )
        if needs_hash:
            subparser.add_argument("--hash-file", required=True, type=Path)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    env_file: Path = args.env_file

    if not env_file.exists():
        print(f"Environment file {env_file} does not exist.", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    try:
        settings = _load_settings(env_file)
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR

    if not settings.refresh_api_key:
        print(
            "warning: REFRESH_API_KEY is unset; POST /api/refresh is open to any caller.",
            file=sys.stderr,
        )

    handlers: dict[str, Callable[[], int]] = {
        "check": lambda: EXIT_OK,
        "show": lambda: _show_settings(settings),
        "record": lambda: _record_checksum(env_file, args.hash_file),
        "verify": lambda: _verify_checksum(env_file, args.hash_file),
    }
    return handlers[args.command]()


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
