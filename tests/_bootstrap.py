"""Test helper that normalizes sys.path and environment defaults."""

from __future__ import annotations

import os
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


_DEFAULT_ENV_VARS: dict[str, str] = {
    "AUTHORIZATION_URL": "https://idp.example.com/oauth2/authorize",
    "TOKEN_URL": "https://idp.example.com/oauth2/token",
    "CLIENT_ID": "test-client-id",
    "CLIENT_SECRET": "test-client-secret",
    "REDIRECT_URI": "https://relay.example.com/callback",
    "SCOPE": "openid,offline_access",
    "SESSION_SECRET": "test-session-secret",
    "DATABASE_PATH": ":memory:",
    "SCHEDULER_ENABLED": "false",
}

for key, value in _DEFAULT_ENV_VARS.items():
    os.environ.setdefault(key, value)
