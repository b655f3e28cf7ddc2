"""
Notification Settings Service
Per-user delivery configuration: gateway address and SMTP credentials
"""

import logging
from typing import Dict, Optional, Any
from dataclasses import dataclass
from datetime import datetime
from sqlalchemy.orm import Session

from database import get_db_context
import models
from tools.email_sender import SMTPConfig, email_sender


logger = logging.getLogger(__name__)


PASSWORD_MASK = "***"

UPDATABLE_FIELDS = (
    "pushover_email", "smtp_host", "smtp_port", "smtp_secure",
    "smtp_user", "smtp_password", "notifications_enabled"
)


class ConfigIncomplete(Exception):
    """The user cannot currently receive notifications"""


@dataclass
class DeliveryTarget:
    """Resolved destination plus the account used to reach it"""
    smtp: SMTPConfig
    destination: str


def is_fully_configured(config: Optional[models.UserNotificationConfig]) -> bool:
    """Destination set, SMTP credentials complete and notifications enabled"""
    return bool(
        config
        and config.notifications_enabled
        and config.has_pushover_email
        and config.has_valid_smtp_config
    )


def to_smtp_config(config: models.UserNotificationConfig) -> SMTPConfig:
    return SMTPConfig(
        host=config.smtp_host,
        port=config.smtp_port,
        user=config.smtp_user,
        password=config.smtp_password,
        secure=bool(config.smtp_secure)
    )


def to_public_dict(config: models.UserNotificationConfig) -> Dict[str, Any]:
    """Serializable view with the SMTP password masked"""
    return {
        "user_id": config.user_id,
        "pushover_email": config.pushover_email,
        "smtp_host": config.smtp_host,
        "smtp_port": config.smtp_port,
        "smtp_secure": bool(config.smtp_secure),
        "smtp_user": config.smtp_user,
        "smtp_password": PASSWORD_MASK if config.smtp_password else None,
        "notifications_enabled": bool(config.notifications_enabled),
        "is_configured": is_fully_configured(config),
        "updated_at": config.updated_at,
    }


class SettingsService:
    """
    Service for per-user notification settings.

    Settings rows are created with defaults the first time they are
    read, so every user always has one.
    """

    def _get_or_create(self, session: Session, user_id: int) -> models.UserNotificationConfig:
        config = session.query(models.UserNotificationConfig).filter(
            models.UserNotificationConfig.user_id == user_id
        ).first()

        if config:
            return config

        user = session.query(models.User).filter(models.User.id == user_id).first()
        if not user:
            raise ValueError(f"User {user_id} not found")

        config = models.UserNotificationConfig(user_id=user_id, notifications_enabled=True)
        session.add(config)
        session.commit()
        session.refresh(config)
        logger.info(f"Created default notification settings for user {user_id}")
        return config

    async def get_or_create(
        self,
        user_id: int,
        db: Optional[Session] = None
    ) -> models.UserNotificationConfig:
        if db:
            return self._get_or_create(db, user_id)
        with get_db_context() as session:
            return self._get_or_create(session, user_id)

    async def update(
        self,
        user_id: int,
        updates: Dict[str, Any],
        db: Optional[Session] = None
    ) -> models.UserNotificationConfig:
        """
        Apply settings updates. An absent or empty password keeps the
        stored one, as does the masked placeholder echoed back by clients.
        """
        updates = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS}
        if updates.get("smtp_password") in (None, "", PASSWORD_MASK):
            updates.pop("smtp_password", None)

        port = updates.get("smtp_port")
        if port is not None and not 1 <= port <= 65535:
            raise ValueError("SMTP port must be between 1 and 65535")

        def _update(session: Session) -> models.UserNotificationConfig:
            config = self._get_or_create(session, user_id)

            for key, value in updates.items():
                setattr(config, key, value)

            config.updated_at = datetime.utcnow()
            session.commit()
            session.refresh(config)

            logger.info(f"Updated notification settings for user {user_id}: {sorted(updates.keys())}")
            return config

        if db:
            return _update(db)
        with get_db_context() as session:
            return _update(session)

    async def resolve_delivery(
        self,
        user_id: int,
        db: Optional[Session] = None
    ) -> DeliveryTarget:
        """
        Where and how to send a user's reminders

        Raises:
            ConfigIncomplete: Settings missing, disabled, or lacking the
                destination or SMTP credentials
        """
        def _resolve(session: Session) -> DeliveryTarget:
            config = session.query(models.UserNotificationConfig).filter(
                models.UserNotificationConfig.user_id == user_id
            ).first()

            if not config:
                raise ConfigIncomplete(f"User {user_id} has no notification settings")
            if not config.notifications_enabled:
                raise ConfigIncomplete(f"Notifications disabled for user {user_id}")
            if not config.has_pushover_email:
                raise ConfigIncomplete(f"User {user_id} has no destination address")
            if not config.has_valid_smtp_config:
                raise ConfigIncomplete(f"User {user_id} has incomplete SMTP settings")

            return DeliveryTarget(smtp=to_smtp_config(config), destination=config.pushover_email)

        if db:
            return _resolve(db)
        with get_db_context() as session:
            return _resolve(session)

    def _smtp_for_testing(self, session: Session, user_id: int) -> models.UserNotificationConfig:
        config = self._get_or_create(session, user_id)
        if not config.has_valid_smtp_config:
            raise ConfigIncomplete("SMTP host, port, user and password are required")
        return config

    async def verify_smtp(
        self,
        user_id: int,
        db: Optional[Session] = None
    ) -> bool:
        """Check that the stored SMTP account accepts a login"""
        if db:
            config = self._smtp_for_testing(db, user_id)
            smtp = to_smtp_config(config)
        else:
            with get_db_context() as session:
                smtp = to_smtp_config(self._smtp_for_testing(session, user_id))

        return await email_sender.verify(smtp)

    async def send_test_email(
        self,
        user_id: int,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """
        Send a configuration test message to the user's destination, or
        to the SMTP account itself when no destination is set yet.
        """
        def _load(session: Session):
            config = self._smtp_for_testing(session, user_id)
            user = session.query(models.User).filter(models.User.id == user_id).first()
            destination = config.pushover_email or config.smtp_user
            return to_smtp_config(config), destination, user.name if user else None

        if db:
            smtp, destination, user_name = _load(db)
        else:
            with get_db_context() as session:
                smtp, destination, user_name = _load(session)

        message_id = await email_sender.send_test_email(smtp, destination, user_name=user_name)
        logger.info(f"Test email sent for user {user_id}")
        return {"success": True, "message_id": message_id, "destination": destination}


# Singleton instance
settings_service = SettingsService()
