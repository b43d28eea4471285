from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, UniqueConstraint
from sqlalchemy.sql import func
from tutorbook.cores.db import Base


class UserNotification(Base):
    __tablename__ = "user_notifications"

    id = Column(Integer, primary_key=True, index=True)
    notification_id = Column(Integer, ForeignKey("notifications.id"), nullable=False)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True, index=True)
    # Un evento entregado dos veces no duplica la notificación
    event_id = Column(Integer, ForeignKey("booking_events.id"), nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    sent_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (UniqueConstraint("event_id", "user_id", name="uq_user_notifications_event_user"),)

    def __repr__(self):
        return f"<UserNotification(notification_id={self.notification_id}, user_id={self.user_id}, is_read={self.is_read})>"
