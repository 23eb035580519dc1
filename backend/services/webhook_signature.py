# backend/services/webhook_signature.py
import hashlib
import hmac
from typing import Optional


def sign(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify(secret: str, raw_body: bytes, signature: Optional[str]) -> bool:
    """HMAC-SHA256 (hex) of the exact request body, compared in constant time."""
    if not signature:
        return False
    # some providers prefix the digest, e.g. "sha256=..."
    candidate = signature.split("=", 1)[1] if signature.startswith("sha256=") else signature
    return hmac.compare_digest(sign(secret, raw_body), candidate.strip())
