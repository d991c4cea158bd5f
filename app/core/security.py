import re
import html
from typing import Any, Dict, Optional

SENSITIVE_KEYS = ("password", "token", "secret", "key", "auth")
REDACTED = "[REDACTED]"

def sanitize_input(text: str) -> str:
    """Basic input sanitization to prevent XSS."""
    if not isinstance(text, str):
        return text
    # Remove script blocks before escaping, otherwise the tags are no longer matchable
    sanitized = re.sub(r'<script.*?>.*?</script>', '', text, flags=re.DOTALL | re.IGNORECASE)
    return html.escape(sanitized.strip())

def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_KEYS)

def redact_sensitive(payload: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Replace values of credential-like keys before they are persisted or logged."""
    if payload is None:
        return None
    redacted = {}
    for key, value in payload.items():
        if is_sensitive_key(str(key)):
            redacted[key] = REDACTED
        elif isinstance(value, dict):
            redacted[key] = redact_sensitive(value)
        else:
            redacted[key] = value
    return redacted
