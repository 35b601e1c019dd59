# courier_dispatch/transport/security.py
"""
Terminal authentication and response hardening.

Security features:
- Constant-time bearer token comparison (timing attack prevention)
- Weak token detection at startup
- OWASP security headers on every response
- Generic error text in production
"""
import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from courier_dispatch.config import settings
from courier_dispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

# Minimum token length for security (32 bytes = 256 bits)
MIN_TOKEN_LENGTH = 32
WEAK_TOKEN_PATTERNS = [
    "password", "secret", "token", "admin", "test", "demo",
    "123456", "000000", "111111", "aaaaaa",
]

bearer_scheme = HTTPBearer(
    scheme_name="Terminal Token",
    description="Enter the terminal token (without 'Bearer ' prefix)",
    auto_error=False,  # We handle errors ourselves for better messages
)


def validate_token_strength(token: str, token_name: str = "token") -> list[str]:
    """Return warnings for a weak token (empty list if it looks strong)."""
    warnings = []

    if len(token) < MIN_TOKEN_LENGTH:
        warnings.append(
            f"{token_name} is too short ({len(token)} chars). "
            f"Minimum recommended: {MIN_TOKEN_LENGTH} chars"
        )

    token_lower = token.lower()
    for pattern in WEAK_TOKEN_PATTERNS:
        if pattern in token_lower:
            warnings.append(
                f"{token_name} contains weak pattern '{pattern}'. "
                "Use a cryptographically random token"
            )
            break

    return warnings


def check_configured_tokens() -> None:
    """Log warnings for weak tokens. Call from app startup."""
    if settings.terminal_token:
        for warning in validate_token_strength(settings.terminal_token, "TERMINAL_TOKEN"):
            logger.warning(f"SECURITY: {warning}")


def require_terminal_auth(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    """
    Dependency for terminal-facing mutating routes and /metrics.

    - TERMINAL_TOKEN set: require a matching Bearer token
    - not set, non-prod: open (local development)
    - not set, prod: 503 (misconfiguration)
    """
    expected = settings.terminal_token
    if not expected:
        if settings.is_production:
            logger.critical("TERMINAL_TOKEN not configured but protected endpoint accessed")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Service unavailable",
            )
        return

    if not credentials:
        logger.warning("Protected endpoint accessed without token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not hmac.compare_digest(credentials.credentials, expected):
        logger.warning(
            "Invalid terminal token attempt",
            extra={"token_prefix": credentials.credentials[:4] if len(credentials.credentials) >= 4 else "***"},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


class SecurityHeaders:
    """Adds OWASP recommended headers to API responses."""

    @staticmethod
    def add_security_headers(response):
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        # Dispatch state changes every few seconds
        if "Cache-Control" not in response.headers:
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"

        if settings.is_production or settings.is_staging:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        if "Server" in response.headers:
            del response.headers["Server"]

        return response


def sanitize_error_message(error: Exception, is_production: bool) -> str:
    """
    Sanitize error messages for external responses.
    In production: Generic messages
    In dev: Detailed messages
    """
    if not is_production:
        return str(error)

    generic_messages = {
        "ValueError": "Invalid input",
        "KeyError": "Invalid request",
        "ConnectionError": "Service temporarily unavailable",
        "TimeoutError": "Request timeout",
    }

    return generic_messages.get(type(error).__name__, "An error occurred")
