"""
Hashing and signing primitives shared by provider adapters.

Vendor APIs disagree on everything, including how a password travels:
- SHA-256 hex (Solarman login)
- MD5 hex / base64 (Solis Content-MD5, Fox ESS signature)
- HMAC-SHA1 base64 (Solis request signature)
- Growatt and Hoymiles password transforms
"""
from __future__ import annotations
import base64
import hashlib
import hmac


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def md5_hex(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def md5_base64(value: str) -> str:
    """Base64 of the raw MD5 digest (HTTP Content-MD5 header format)."""
    return base64.b64encode(hashlib.md5(value.encode("utf-8")).digest()).decode("ascii")


def hmac_sha1_base64(secret: str, message: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def growatt_password_hash(password: str) -> str:
    """
    Growatt ShineServer password transform.

    MD5 hex digest where every '0' found at an even index is replaced by 'c'.
    """
    chars = list(md5_hex(password))
    for i in range(0, len(chars), 2):
        if chars[i] == "0":
            chars[i] = "c"
    return "".join(chars)


def hoymiles_password_hash(password: str) -> str:
    """Hoymiles S-Miles login format: ``md5hex.base64(sha256)``."""
    sha = base64.b64encode(hashlib.sha256(password.encode("utf-8")).digest()).decode("ascii")
    return f"{md5_hex(password)}.{sha}"
