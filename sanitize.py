"""
Sanitizers for user content and for log output.

User-supplied HTML is cleaned with bleach before it is stored so that
rendering it later cannot run scripts. The log helpers keep credentials and
personal data out of the application log.
"""

import re
from typing import Any, Dict, Optional

import bleach

ALLOWED_TAGS = ["a", "b", "i", "em", "strong", "p", "ul", "ol", "li", "br", "span", "code", "pre"]
ALLOWED_ATTRIBUTES = ["href", "title", "rel", "target"]

SENSITIVE_KEYS = ("password", "token", "authorization", "cookie", "secret", "key", "apikey")
REDACTED = "***REDACTED***"


# ---------- Content ----------

def sanitize_html(value: Optional[str]) -> str:
    if not value:
        return ""
    return bleach.clean(value, tags=ALLOWED_TAGS, attributes=ALLOWED_ATTRIBUTES, strip=True)


def sanitize_plain(value: Optional[str]) -> str:
    if not value:
        return ""
    return bleach.clean(value, tags=[], strip=True)


def sanitize_tag_value(value: str) -> str:
    return sanitize_plain(value).lower().strip()


# ---------- Logs ----------

def sanitize_for_log(data: Dict[str, Any]) -> Dict[str, Any]:
    clean = {**data}
    for k in clean:
        if any(s in k.lower() for s in SENSITIVE_KEYS):
            clean[k] = REDACTED
    return clean


def sanitize_email(email: str) -> str:
    """alice@example.com -> a***@example.com"""
    local, _, domain = (email or "").partition("@")
    if not local or not domain:
        return "***@***.***"
    return f"{local[0]}***@{domain}"


def sanitize_connection_string(uri: str) -> str:
    return re.sub(r"mongodb(\+srv)?://([^:/]+):([^@]+)@", r"mongodb\1://***:***@", uri)
