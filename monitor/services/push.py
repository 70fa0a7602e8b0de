"""
monitor/services/push.py

Push notification delivery through Firebase Cloud Messaging (Admin SDK).
send_to_destination never raises: every outcome is reported as a PushResult
so the recorder decides the delivered flag.
"""

import asyncio
from typing import Optional, Protocol

import firebase_admin
import structlog
from firebase_admin import credentials, messaging
from firebase_admin.exceptions import FirebaseError

from monitor.schemas import PushDestination, PushResult

logger = structlog.get_logger(__name__)


class PushGateway(Protocol):
    """Best-effort push transport."""

    async def send_to_destination(
        self,
        destination: PushDestination,
        title: str,
        body: str,
        data: dict[str, str],
    ) -> PushResult: ...


class FirebasePushGateway:
    """
    FCM HTTP v1 delivery via firebase-admin.

    The SDK call is blocking, so it runs in a worker thread bounded by
    timeout. The Firebase app is initialized on first send under a name
    private to this gateway.
    """

    def __init__(
        self,
        credentials_path: str = "",
        project_id: str = "",
        timeout: float = 5.0,
    ) -> None:
        self._credentials_path = credentials_path
        self._project_id = project_id
        self._timeout = timeout
        self._app: Optional[firebase_admin.App] = None

    @property
    def configured(self) -> bool:
        return bool(self._credentials_path or self._project_id)

    def _firebase_app(self) -> firebase_admin.App:
        if self._app is None:
            credential = (
                credentials.Certificate(self._credentials_path)
                if self._credentials_path
                else credentials.ApplicationDefault()
            )
            options = {"projectId": self._project_id} if self._project_id else None
            self._app = firebase_admin.initialize_app(
                credential, options, name=f"health-monitor-{id(self)}"
            )
        return self._app

    async def send_to_destination(
        self,
        destination: PushDestination,
        title: str,
        body: str,
        data: dict[str, str],
    ) -> PushResult:
        if not self.configured:
            logger.warning("push_skipped", reason="firebase credentials not configured")
            return PushResult(success=False, error="firebase credentials not configured")

        target = destination.token or f"topic:{destination.topic}"
        message = messaging.Message(
            notification=messaging.Notification(title=title, body=body),
            data={k: str(v) for k, v in data.items()},
            token=destination.token or None,
            topic=None if destination.token else destination.topic,
        )

        try:
            app = self._firebase_app()
            message_id = await asyncio.wait_for(
                asyncio.to_thread(messaging.send, message, app=app),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("push_timeout", target=target, timeout=self._timeout)
            return PushResult(success=False, error="timeout")
        except FirebaseError as exc:
            logger.warning("push_rejected", target=target, code=exc.code, error=str(exc))
            return PushResult(success=False, error=f"{exc.code}: {exc}")
        except Exception as exc:
            logger.error("push_unexpected_error", target=target, error=str(exc))
            return PushResult(success=False, error=str(exc))

        logger.info("push_notification_sent", target=target, title=title)
        return PushResult(success=True, message_id=message_id)
