from sqlalchemy import Column, Integer, String, ForeignKey
from tutorbook.cores.db import Base, UTCDateTime, utcnow
from tutorbook.models.common.status import PaymentStatus


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)  # unidades menores
    currency = Column(String(3), nullable=False)
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    stripe_payment_intent_id = Column(String(100), nullable=True, unique=True, index=True)
    client_secret = Column(String(255), nullable=True)
    error = Column(String(255), nullable=True)
    stripe_refund_id = Column(String(100), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Payment(id={self.id}, booking_id={self.booking_id}, status={self.status}, intent={self.stripe_payment_intent_id})>"
