"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from safety_engine.core.config import settings
from safety_engine.core.security import decode_access_token
from safety_engine.core.ws_manager import DASHBOARD_ROLES, ws_publisher
from safety_engine.db.session import get_db
from safety_engine.db.store import SqlAlchemySosStore
from safety_engine.engine import SafetyEngine
from safety_engine.services.collaborators import Identity, IdentityProvider, StaticIdentity
from safety_engine.services.escalation_service import EscalationPolicy
from safety_engine.services.evidence_service import LocalEvidenceStorage
from safety_engine.services.notification_service import WebhookDispatcher

security = HTTPBearer(auto_error=False)


def identity_from_token(token: str) -> Identity | None:
    """Validate a bearer JWT and return the caller, or None."""
    payload = decode_access_token(token)
    if not payload or "sub" not in payload:
        return None
    return Identity(user_id=str(payload["sub"]), role=str(payload.get("role", "user")))


def get_identity(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> StaticIdentity:
    """Caller identity for this request; anonymous when no valid token is sent."""
    if not credentials:
        return StaticIdentity(None)
    return StaticIdentity(identity_from_token(credentials.credentials))


def get_current_identity(identity: Annotated[StaticIdentity, Depends(get_identity)]) -> Identity:
    """Require an authenticated caller. Raises 401 if not authenticated."""
    caller = identity.current_identity()
    if caller is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "not_authenticated", "message": "Not authenticated"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return caller


def require_responder(caller: Annotated[Identity, Depends(get_current_identity)]) -> Identity:
    """Require a police / operator caller (dashboard side)."""
    if caller.role not in DASHBOARD_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "forbidden", "message": "Only responders can do this"},
        )
    return caller


def build_engine(db: Session, identity: IdentityProvider) -> SafetyEngine:
    """Engine on a session, wired with the configured collaborators."""
    return SafetyEngine(
        SqlAlchemySosStore(db),
        identity,
        dispatcher=WebhookDispatcher(settings.notification_webhook_url) if settings.notification_webhook_url else None,
        publisher=ws_publisher,
        evidence_storage=LocalEvidenceStorage(settings.evidence_storage_dir),
        policy=EscalationPolicy.from_settings(settings),
        proximity_buffer_meters=settings.proximity_buffer_meters,
    )


def get_engine(
    db: Annotated[Session, Depends(get_db)],
    identity: Annotated[StaticIdentity, Depends(get_identity)],
) -> SafetyEngine:
    """Engine bound to this request's session and caller."""
    return build_engine(db, identity)
