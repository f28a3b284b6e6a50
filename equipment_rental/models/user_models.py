from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from equipment_rental.db.base import Base


class User(Base):
    __tablename__ = "Users"

    UserID = Column(Integer, primary_key=True)
    CompanyID = Column(Integer, nullable=False, index=True)
    Name = Column(String(255), nullable=False)
    Email = Column(String(255))
    Role = Column(String(20), nullable=False, default="operator")
    IsActive = Column(Boolean, default=True)
    CreatedDate = Column(DateTime, server_default=func.now())


class Notification(Base):
    __tablename__ = "Notifications"

    NotificationID = Column(Integer, primary_key=True)
    CompanyID = Column(Integer, nullable=False, index=True)
    NotificationType = Column(String(50), nullable=False)
    Title = Column(String(255), nullable=False)
    Message = Column(String(2000), nullable=False)
    CreatedBy = Column(Integer, nullable=False)
    ReferenceID = Column(Integer, index=True)
    RequestedStatus = Column(String(20))
    Resolved = Column(Boolean, default=False, nullable=False)
    Resolution = Column(String(20))
    ResolvedBy = Column(Integer)
    ResolvedAt = Column(DateTime)
    CreatedAt = Column(DateTime, server_default=func.now())

    Recipients = relationship("NotificationRecipient", back_populates="Notification", cascade="all, delete-orphan")


class NotificationRecipient(Base):
    __tablename__ = "NotificationRecipients"

    NotificationRecipientID = Column(Integer, primary_key=True)
    NotificationID = Column(Integer, ForeignKey("Notifications.NotificationID"), nullable=False)
    UserID = Column(Integer, ForeignKey("Users.UserID"), nullable=False, index=True)
    IsRead = Column(Boolean, default=False, nullable=False)

    Notification = relationship("Notification", back_populates="Recipients")
