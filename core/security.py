import hashlib
import hmac
import os
import secrets

# ======================
# PASSWORD / PIN HASHING (PBKDF2)
# ======================

_ITERATIONS = 100_000


def hash_secret(secret: str) -> str:
    salt = os.urandom(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        secret.encode(),
        salt,
        _ITERATIONS,
    )
    return salt.hex() + ":" + digest.hex()


def verify_secret(secret: str, stored: str | None) -> bool:
    if not stored or ":" not in stored:
        return False
    salt_hex, hash_hex = stored.split(":", 1)
    try:
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(hash_hex)
    except ValueError:
        return False

    digest = hashlib.pbkdf2_hmac(
        "sha256",
        secret.encode(),
        salt,
        _ITERATIONS,
    )
    return hmac.compare_digest(digest, expected)


# ======================
# IDS / TOKENS
# ======================

def new_session_token() -> str:
    return secrets.token_urlsafe(32)


def new_record_id(prefix: str = "") -> str:
    return f"{prefix}{secrets.token_hex(10)}"
