from __future__ import annotations

import hashlib
import hmac
import os


ADMIN_API_TOKEN = os.environ.get("ADMIN_API_TOKEN", "")
ADMIN_TOKEN_PEPPER = os.environ.get("ADMIN_TOKEN_PEPPER", "").encode("utf-8")


def hash_admin_token(token: str) -> str:
    digest = hashlib.sha256()
    digest.update(ADMIN_TOKEN_PEPPER)
    digest.update(token.encode("utf-8"))
    return digest.hexdigest()


def verify_admin_token(candidate: str | None, expected: str | None = None) -> bool:
    configured = ADMIN_API_TOKEN if expected is None else expected
    if not configured or not candidate:
        return False
    return hmac.compare_digest(hash_admin_token(candidate), hash_admin_token(configured))
