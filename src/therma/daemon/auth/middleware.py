"""FastAPI dependency resolving the caller's user id from a bearer token."""

from fastapi import Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..errors import Unauthorized
from ..utils.logging_config import StructuredLogger

logger = StructuredLogger(__name__)
security = HTTPBearer(auto_error=False)


def get_user_from_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(security),
) -> str:
    """Authenticate the caller and return their user id."""
    if credentials is None or not credentials.credentials:
        logger.warning("Authentication failed: missing bearer token", path=request.url.path)
        raise Unauthorized(details="missing authorization header")

    verifier = request.app.state.services.verifier
    try:
        return verifier.verify(credentials.credentials)
    except Unauthorized as exc:
        logger.warning("Authentication failed", reason=exc.details, path=request.url.path)
        raise
