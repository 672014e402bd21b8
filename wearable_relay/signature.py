import hmac
import hashlib


def strip_wrapping_quotes(value: str) -> str:
    """Remove a single pair of wrapping quotes if present.

    Cloud Run / .env setups sometimes accidentally include quotes, e.g.
    WHOOP_WEBHOOK_SECRET="deadbeef..."
    """
    s = (value or "").strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ("'", '"'):
        return s[1:-1].strip()
    return s


def compute_signature(body: bytes, secret: bytes) -> str:
    """Hex HMAC-SHA256 of the exact raw body, as sent in the signature header."""
    return hmac.new(secret, body or b"", hashlib.sha256).hexdigest()


def _presented_digest(header_value: str) -> str:
    # Some senders prefix the algorithm the way Meta does ("sha256=<hex>").
    if header_value.startswith("sha256="):
        return header_value[len("sha256="):]
    return header_value


def verify_webhook_signature(body: bytes, signature_header: str | None, secret: bytes | None) -> bool:
    """Verify a webhook HMAC; fails closed when the secret or the header is missing.

    Both sides are reduced to fixed-size SHA-256 digests before ``compare_digest`` so a
    header of the wrong length is rejected in the same time as a wrong value.
    """
    if not secret or not signature_header:
        return False
    expected = compute_signature(body, secret)
    presented = _presented_digest(signature_header)
    return hmac.compare_digest(
        hashlib.sha256(expected.encode("utf-8")).digest(),
        hashlib.sha256(presented.encode("utf-8", "surrogateescape")).digest(),
    )


def signature_debug_info(body: bytes, signature_header: str | None) -> dict:
    """Safe debug info (no secrets, only prefixes/lengths) for logging on failure."""
    hdr = signature_header or ""
    return {
        "body_len": len(body or b""),
        "header_len": len(hdr),
        "header_prefix": (hdr[:8] + "…") if hdr else "",
    }
