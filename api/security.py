"""Security utilities for API authentication and data protection."""

import base64
import hashlib
import hmac
import os
import re
import time
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from loguru import logger

from drafting.error_handling import UnauthenticatedError

TOKEN_TTL_SECONDS = 86400


def validate_api_key_format(api_key: str) -> bool:
    """Validate Google API key format."""
    if not api_key:
        return False

    placeholder_values = [
        "your_gemini_api_key_here",
        "your_api_key_here",
        "placeholder",
        "test_key",
        "demo_key"
    ]

    if api_key.lower() in placeholder_values:
        return False

    if api_key.startswith("AIza") and len(api_key) == 39:
        return True

    if len(api_key) >= 20 and re.match(r'^[A-Za-z0-9_-]+$', api_key):
        return True

    return False


def validate_environment_security() -> Dict[str, Any]:
    """Validate security configuration from environment variables.

    A missing Gemini key is only a warning: the generation service falls back
    to deterministic drafting without it.

    Returns:
        Dictionary with validation results and warnings
    """
    warnings = []
    errors = []

    api_key = os.getenv("GOOGLE_API_KEY")
    if not api_key:
        warnings.append("GOOGLE_API_KEY is not set; AI drafting will use template fallbacks")
    elif not validate_api_key_format(api_key):
        errors.append("GOOGLE_API_KEY has invalid format or is a placeholder")

    secret = os.getenv("AUTH_TOKEN_SECRET")
    if not secret:
        warnings.append("AUTH_TOKEN_SECRET is not set. API requests are not authenticated.")
    elif len(secret) < 16:
        errors.append("AUTH_TOKEN_SECRET must be at least 16 characters")

    cors_origins = os.getenv("CORS_ORIGINS", "")
    if "*" in cors_origins:
        warnings.append(
            "CORS_ORIGINS includes wildcard (*). This is insecure for production."
        )
    elif not cors_origins:
        warnings.append("CORS_ORIGINS is not configured")

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    if log_level == "DEBUG":
        warnings.append(
            "LOG_LEVEL is set to DEBUG. Consider using INFO or WARNING in production."
        )

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings
    }


# Bearer tokens

def create_access_token(user_id: str, secret: str, issued_at: Optional[int] = None) -> str:
    """Create an HMAC-signed bearer token carrying the user id and issue time."""
    timestamp = str(int(issued_at if issued_at is not None else time.time()))
    msg = f"{user_id}:{timestamp}".encode()
    signature = hmac.new(secret.encode(), msg, hashlib.sha256).hexdigest()
    token = f"{user_id}:{timestamp}:{signature}"
    return base64.urlsafe_b64encode(token.encode()).decode()


def verify_access_token(token: str, secret: str, now: Optional[float] = None) -> Optional[str]:
    """Verify signature and 24-hour expiry.

    Returns:
        The user id the token was issued to, or None when invalid
    """
    try:
        decoded = base64.urlsafe_b64decode(token.encode()).decode()
        user_id, timestamp, signature = decoded.rsplit(":", 2)
        issued_at = int(timestamp)
    except (ValueError, UnicodeDecodeError):
        return None

    now = time.time() if now is None else now
    if now - issued_at > TOKEN_TTL_SECONDS:
        return None

    msg = f"{user_id}:{timestamp}".encode()
    expected_sig = hmac.new(secret.encode(), msg, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(signature, expected_sig):
        return None
    return user_id


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


class StaticTokenProvider:
    """AuthProvider returning a fixed bearer token."""

    def __init__(self, token: Optional[str]):
        self.token = token

    async def current_token(self) -> str:
        if not self.token:
            raise UnauthenticatedError("No API token configured")
        return self.token


def sanitize_session_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Redact party contact details before logging a session payload.

    Args:
        data: Session data dictionary

    Returns:
        Sanitized copy
    """
    sanitized = dict(data)
    step3 = sanitized.get("step3_data")
    if isinstance(step3, dict) and isinstance(step3.get("mandatory_fields"), dict):
        fields = dict(step3["mandatory_fields"])
        for slot in ("party1", "party2"):
            party = fields.get(slot)
            if isinstance(party, dict):
                fields[slot] = {
                    **party,
                    "email": "[REDACTED]",
                    "phone": "[REDACTED]" if party.get("phone") else None,
                    "address": "[REDACTED]" if party.get("address") else None,
                }
        sanitized["step3_data"] = {**step3, "mandatory_fields": fields}

    if isinstance(sanitized.get("step1_data"), dict) and sanitized["step1_data"].get("user_prompt"):
        prompt = sanitized["step1_data"]["user_prompt"]
        sanitized["step1_data"] = {
            **sanitized["step1_data"],
            "user_prompt": f"[REDACTED: {len(prompt)} characters]"
        }
    return sanitized


def get_security_headers() -> Dict[str, str]:
    """Get recommended security headers for API responses.

    Returns:
        Dictionary of security headers
    """
    return {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "X-XSS-Protection": "1; mode=block",
        "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
        "Content-Security-Policy": "default-src 'self'",
        "Referrer-Policy": "strict-origin-when-cross-origin"
    }


def get_tls_config() -> Optional[Dict[str, str]]:
    """Get TLS/SSL configuration from environment.

    Returns:
        Dictionary with cert and key paths, or None if TLS is not enabled
    """
    if os.getenv("TLS_ENABLED", "false").lower() != "true":
        return None

    cert_path = os.getenv("TLS_CERT_PATH")
    key_path = os.getenv("TLS_KEY_PATH")

    if not cert_path or not key_path:
        logger.warning("TLS_ENABLED is true but certificate paths are not configured")
        return None

    for label, path in (("certificate", cert_path), ("key", key_path)):
        if not os.path.isfile(path):
            logger.error(f"TLS {label} not found: {path}")
            return None

    return {
        "certfile": cert_path,
        "keyfile": key_path
    }


def log_security_audit(event_type: str, session_id: str, details: Optional[Dict[str, Any]] = None):
    """Log security-related events for audit trail.

    Args:
        event_type: Type of security event (e.g., "session_created", "token_rejected")
        session_id: Session identifier
        details: Optional additional details
    """
    audit_entry = {
        "event_type": event_type,
        "session_id": session_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "details": details or {}
    }

    logger.info(f"SECURITY_AUDIT: {event_type}", **audit_entry)
