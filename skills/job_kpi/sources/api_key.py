"""JobNimbus API key resolution with an encrypted on-disk cache."""

from __future__ import annotations

import base64
import hashlib
import os
import sys
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

API_KEY_ENV = "JOB_NIMBUS_API_KEY"
DEFAULT_CACHE_FILE = "job_nimbus_api_key.bin"


def _secret_bytes() -> bytes:
    return os.getenv("SESSION_SECRET", "dev-session-secret-change-me").encode("utf-8")


def _fernet() -> Fernet:
    raw = os.getenv("TOKEN_ENCRYPTION_KEY", "").strip()
    if raw:
        try:
            return Fernet(raw.encode("utf-8"))
        except ValueError:
            print("TOKEN_ENCRYPTION_KEY is not a valid Fernet key; deriving one from SESSION_SECRET", file=sys.stderr, flush=True)

    derived = hashlib.sha256(_secret_bytes()).digest()
    return Fernet(base64.urlsafe_b64encode(derived))


def cache_path(token_dir: str = ".tokens") -> Path:
    return Path(token_dir).expanduser().resolve() / DEFAULT_CACHE_FILE


def save_api_key(api_key: str, token_dir: str = ".tokens") -> Path:
    path = cache_path(token_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(_fernet().encrypt(api_key.encode("utf-8")))
    return path


def load_cached_api_key(token_dir: str = ".tokens") -> Optional[str]:
    path = cache_path(token_dir)
    if not path.exists():
        return None
    try:
        api_key = _fernet().decrypt(path.read_bytes()).decode("utf-8").strip()
    except (InvalidToken, UnicodeDecodeError):
        # written under a different encryption key
        return None
    return api_key or None


def get_api_key(new_api_key: Optional[str] = None, token_dir: str = ".tokens") -> str:
    """Resolve the API key from the argument, the environment, then the cache.

    An explicitly given key is also cached for later runs.
    """
    if new_api_key:
        try:
            save_api_key(new_api_key, token_dir)
        except OSError as exc:
            print(f"Could not cache the JobNimbus API key: {exc}", file=sys.stderr, flush=True)
        return new_api_key

    env_key = os.getenv(API_KEY_ENV, "").strip()
    if env_key:
        return env_key

    cached = load_cached_api_key(token_dir)
    if cached:
        return cached
    raise ValueError(
        f"A JobNimbus API key was not specified, {API_KEY_ENV} is unset and no cached key exists "
        f"at {cache_path(token_dir)}. Pass --api-key once to cache it."
    )
