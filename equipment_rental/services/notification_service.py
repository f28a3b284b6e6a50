from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from equipment_rental.models.user_models import Notification, NotificationRecipient, User
from equipment_rental.services.errors import AlreadyResolved, NotFound


LOGGER = logging.getLogger("equipment_rental.notifications")

STATUS_CHANGE_REQUEST = "status_change_request"
RECIPIENT_ROLES = ("operator", "admin", "superadmin")


def _recipient_ids(db: Session, company_id: int, exclude_user_id: int | None) -> list[int]:
    stmt = (
        select(User.UserID)
        .where(User.CompanyID == company_id)
        .where(User.IsActive.is_(True))
        .where(User.Role.in_(RECIPIENT_ROLES))
        .order_by(User.UserID)
    )
    if exclude_user_id is not None:
        stmt = stmt.where(User.UserID != exclude_user_id)
    return [int(user_id) for user_id in db.execute(stmt).scalars().all()]


def notify_status_change_request(
    db: Session,
    *,
    title: str,
    message: str,
    company_id: int,
    requested_by: int,
    reference_id: int,
    requested_status: str,
) -> Notification:
    recipients = _recipient_ids(db, company_id, requested_by)
    notification = Notification(
        CompanyID=company_id,
        NotificationType=STATUS_CHANGE_REQUEST,
        Title=title,
        Message=message,
        CreatedBy=requested_by,
        ReferenceID=reference_id,
        RequestedStatus=requested_status,
        Resolved=False,
        CreatedAt=datetime.now(),
        Recipients=[NotificationRecipient(UserID=user_id, IsRead=False) for user_id in recipients],
    )
    db.add(notification)
    db.flush()
    LOGGER.info(
        "Status change request notification_id=%s reference_id=%s requested_status=%s recipients=%s",
        notification.NotificationID,
        reference_id,
        requested_status,
        len(recipients),
    )
    return notification


def _resolve(db: Session, notification_id: int, actor_id: int, resolution: str) -> Notification:
    notification = db.get(Notification, notification_id)
    if not notification:
        raise NotFound(f"Notification {notification_id} not found.")
    if notification.Resolved:
        raise AlreadyResolved(f"Notification {notification_id} is already {notification.Resolution}.")
    notification.Resolved = True
    notification.Resolution = resolution
    notification.ResolvedBy = actor_id
    notification.ResolvedAt = datetime.now()
    LOGGER.info(
        "Status change request resolved notification_id=%s resolution=%s actor_id=%s",
        notification_id,
        resolution,
        actor_id,
    )
    return notification


def approve_status_change(db: Session, notification_id: int, actor_id: int) -> Notification:
    return _resolve(db, notification_id, actor_id, "approved")


def reject_status_change(db: Session, notification_id: int, actor_id: int) -> Notification:
    return _resolve(db, notification_id, actor_id, "rejected")


def list_notifications_for_user(
    db: Session,
    user_id: int,
    unread_only: bool = False,
    company_id: int | None = None,
) -> list[Notification]:
    stmt = (
        select(Notification)
        .join(NotificationRecipient, NotificationRecipient.NotificationID == Notification.NotificationID)
        .where(NotificationRecipient.UserID == user_id)
        .order_by(Notification.NotificationID.desc())
    )
    if unread_only:
        stmt = stmt.where(NotificationRecipient.IsRead.is_(False))
    if company_id is not None:
        stmt = stmt.where(Notification.CompanyID == company_id)
    return list(db.execute(stmt).scalars().all())


def mark_notification_read(db: Session, notification_id: int, user_id: int, company_id: int) -> Notification:
    recipient = db.execute(
        select(NotificationRecipient)
        .join(Notification, Notification.NotificationID == NotificationRecipient.NotificationID)
        .where(NotificationRecipient.NotificationID == notification_id)
        .where(NotificationRecipient.UserID == user_id)
        .where(Notification.CompanyID == company_id)
    ).scalars().first()
    if not recipient:
        raise NotFound(f"Notification {notification_id} not found.")
    recipient.IsRead = True
    return recipient.Notification


def serialize_notification(notification: Notification, user_id: int | None = None) -> dict:
    payload = {
        "notificationID": notification.NotificationID,
        "type": notification.NotificationType,
        "title": notification.Title,
        "message": notification.Message,
        "referenceID": notification.ReferenceID,
        "requestedStatus": notification.RequestedStatus,
        "resolved": bool(notification.Resolved),
        "resolution": notification.Resolution,
        "resolvedBy": notification.ResolvedBy,
        "resolvedAt": notification.ResolvedAt,
        "recipients": [recipient.UserID for recipient in notification.Recipients],
        "createdAt": notification.CreatedAt,
    }
    if user_id is not None:
        payload["read"] = any(
            recipient.IsRead for recipient in notification.Recipients if recipient.UserID == user_id
        )
    return payload
