"""
cloudbase_manager.tier0_core.signing
─────────────────────────────────────
TC3-HMAC-SHA256 request signing. Pure functions only: identical inputs
always give the identical Authorization value, so the remote side can
recompute it byte for byte.

Pipeline:
  canonical request → string to sign → date/service/"tc3_request" key chain
  → hex HMAC → Authorization header value

Only ``content-type`` and ``host`` are ever signed, whatever other headers
the real request carries.
"""
from __future__ import annotations

import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import Any

ALGORITHM = "TC3-HMAC-SHA256"
SIGNED_HEADERS = "content-type;host"
TERMINATOR = "tc3_request"
KEY_PREFIX = "TC3"

CONTENT_TYPE_JSON = "application/json"
CONTENT_TYPE_FORM = "application/x-www-form-urlencoded"


# ── Payload normalisation ────────────────────────────────────────────────────

def strip_nulls(obj: Any) -> Any:
    """
    Recursively drop ``None`` values from dicts. Lists are processed
    element-wise with order kept; dict key order is kept. ``None`` items
    inside a list are left in place.
    """
    if isinstance(obj, list):
        return [strip_nulls(item) for item in obj]
    if isinstance(obj, dict):
        return {k: strip_nulls(v) for k, v in obj.items() if v is not None}
    return obj


def dump_payload(data: Any) -> str:
    """Compact JSON, used both for the hashed payload and the sent body."""
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


# ── Primitives ────────────────────────────────────────────────────────────────

def sha256_hex(message: str) -> str:
    return hashlib.sha256(message.encode("utf-8")).hexdigest()


def hmac_sha256(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def utc_date(timestamp: int) -> str:
    """UTC calendar date (YYYY-MM-DD) of a unix timestamp, ignoring time of day."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d")


def derive_signing_key(secret_key: str, date: str, service: str) -> bytes:
    """Three-stage key chain: date, then service, then the fixed terminator."""
    k_date = hmac_sha256((KEY_PREFIX + secret_key).encode("utf-8"), date)
    k_service = hmac_sha256(k_date, service)
    return hmac_sha256(k_service, TERMINATOR)


# ── Canonical request ────────────────────────────────────────────────────────

def canonical_headers(http_method: str, host: str) -> str:
    method = http_method.upper()
    if method == "GET":
        block = f"content-type:{CONTENT_TYPE_FORM}\n"
    elif method == "POST":
        block = f"content-type:{CONTENT_TYPE_JSON}\n"
    else:
        block = ""
    return block + f"host:{host}\n"


def build_canonical_request(
    http_method: str,
    url_path: str,
    url_query: str,
    host: str,
    json_body: str | None,
) -> str:
    method = http_method.upper()
    # POST bodies carry the parameters; the query never participates
    query = "" if method == "POST" else (url_query or "")
    payload_hash = sha256_hex(json_body or "")
    return "\n".join([
        method,
        url_path or "/",
        query,
        canonical_headers(method, host),
        SIGNED_HEADERS,
        payload_hash,
    ])


def build_string_to_sign(canonical_request: str, timestamp: int, service: str) -> str:
    scope = f"{utc_date(timestamp)}/{service}/{TERMINATOR}"
    return f"{ALGORITHM}\n{timestamp}\n{scope}\n{sha256_hex(canonical_request)}"


# ── Public API ────────────────────────────────────────────────────────────────

def sign(
    secret_id: str,
    secret_key: str,
    service: str,
    http_method: str,
    url_path: str,
    url_query: str,
    json_body: str | None,
    timestamp: int,
    *,
    host: str,
) -> str:
    """
    Return the Authorization header value for one request.

    Usage:
        auth = sign("AKID...", "key", "tcb", "POST", "/", "", '{"EnvId":"x"}',
                    1700000000, host="tcb.tencentcloudapi.com")
    """
    canonical = build_canonical_request(http_method, url_path, url_query, host, json_body)
    string_to_sign = build_string_to_sign(canonical, timestamp, service)
    date = utc_date(timestamp)
    signing_key = derive_signing_key(secret_key, date, service)
    signature = hmac.new(
        signing_key, string_to_sign.encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return (
        f"{ALGORITHM} Credential={secret_id}/{date}/{service}/{TERMINATOR}, "
        f"SignedHeaders={SIGNED_HEADERS}, Signature={signature}"
    )


__all__ = [
    "strip_nulls",
    "dump_payload",
    "sha256_hex",
    "utc_date",
    "derive_signing_key",
    "build_canonical_request",
    "build_string_to_sign",
    "sign",
    "CONTENT_TYPE_JSON",
    "CONTENT_TYPE_FORM",
]
