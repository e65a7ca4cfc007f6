"""PayFast parameter signing.

The gateway hashes the same string on its side, so every byte here has to
match its encoder: drop empty values, sort keys, urlencode values, append the
passphrase, MD5.
"""
import hashlib
import logging
from typing import Any, Mapping, Optional
from urllib.parse import quote, quote_plus

logger = logging.getLogger(__name__)

FORM_ENCODING = "form"  # PHP urlencode(): space -> "+", "~" escaped
RAW_ENCODING = "raw"    # RFC 3986 rawurlencode(): space -> "%20", "~" bare

# What PayFast's own signature check uses. Do not switch to RAW_ENCODING
# without confirming against the sandbox.
ENCODING_MODE = FORM_ENCODING

SIGNATURE_DIGEST = "md5"
SIGNATURE_FIELD = "signature"
PASSPHRASE_FIELD = "passphrase"


def encode_value(value: Any, mode: str = ENCODING_MODE) -> str:
    text = str(value)
    if mode == FORM_ENCODING:
        return quote_plus(text, safe="").replace("~", "%7E")
    if mode == RAW_ENCODING:
        return quote(text, safe="~")
    raise ValueError(f"unknown encoding mode {mode!r}")


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def canonical_string(params: Mapping[str, Any], passphrase: Optional[str] = None,
                     mode: str = ENCODING_MODE) -> str:
    """Build the string PayFast hashes. Pure; never logs the passphrase."""
    keys = sorted(k for k, v in params.items() if not _is_blank(v))
    pairs = [f"{k}={encode_value(params[k], mode)}" for k in keys]
    if passphrase:
        pairs.append(f"{PASSPHRASE_FIELD}={encode_value(passphrase, mode)}")
    return "&".join(pairs)


def sign(params: Mapping[str, Any], passphrase: Optional[str] = None) -> str:
    """Signature for ``params``; any ``signature`` key present is ignored."""
    unsigned = {k: v for k, v in params.items() if k != SIGNATURE_FIELD}
    base = canonical_string(unsigned, passphrase)
    return hashlib.new(SIGNATURE_DIGEST, base.encode("utf-8")).hexdigest()


def verify(params: Mapping[str, Any], passphrase: Optional[str] = None) -> bool:
    """True when ``params['signature']`` matches the signature we compute."""
    received = params.get(SIGNATURE_FIELD)
    if not received or not isinstance(received, str):
        logger.warning("signature missing from notification")
        return False
    unsigned = {k: v for k, v in params.items() if k != SIGNATURE_FIELD}
    if not canonical_string(unsigned):
        logger.warning("notification carries no signable fields")
        return False
    computed = sign(unsigned, passphrase)
    matched = computed.lower() == received.strip().lower()
    if not matched:
        logger.warning("signature mismatch received=%s computed=%s", received, computed)
    return matched
