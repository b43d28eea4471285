from sqlalchemy import Column, Integer, String, Text, ForeignKey
from tutorbook.cores.db import Base, UTCDateTime, utcnow


class BookingEvent(Base):
    """
    Outbox de eventos de ciclo de vida.
    Se inserta en la misma transacción que la transición; la entrega a los
    consumidores ocurre después del commit y se reintenta (al menos una vez).
    """
    __tablename__ = "booking_events"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False, index=True)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=False)
    actor_id = Column(String(64), nullable=False)
    actor_role = Column(String(20), nullable=False)
    occurred_at = Column(UTCDateTime, default=utcnow, nullable=False)

    dispatched_at = Column(UTCDateTime, nullable=True, index=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "event_id": self.id,
            "booking_id": self.booking_id,
            "event_type": self.event_type,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "timestamp": self.occurred_at.isoformat() if self.occurred_at else None,
        }

    def __repr__(self):
        return f"<BookingEvent(booking_id={self.booking_id}, {self.from_status}->{self.to_status}, type={self.event_type})>"
