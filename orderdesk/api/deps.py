"""
Request-scoped collaborators. Overridable via app.dependency_overrides.
"""
from fastapi import HTTPException, Request, status

from orderdesk.core.config import settings
from orderdesk.db.session import SessionLocal
from orderdesk.services.bulk import SessionFactory
from orderdesk.services.notifications.service import CelerySink, NotificationSink
from orderdesk.storage.base import Storage
from orderdesk.storage.local import LocalStorage


def get_current_actor(request: Request) -> str:
    """Identity of the caller, injected upstream by the auth proxy."""
    if settings.admin_api_key:
        if request.headers.get("X-Api-Key") != settings.admin_api_key:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid api key")
    actor_id = request.headers.get(settings.actor_header)
    if not actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing actor")
    return actor_id


_storage: Storage | None = None


def get_storage() -> Storage:
    global _storage
    if _storage is None:
        _storage = LocalStorage()
    return _storage


def get_notifier() -> NotificationSink:
    return CelerySink()


def get_session_factory() -> SessionFactory:
    return SessionLocal
