from sqlalchemy import Column, Integer, String, Text, ForeignKey, Boolean
from tutorbook.cores.db import Base, UTCDateTime, utcnow
from tutorbook.models.common.status import BookingStatus


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    tutor_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    subject = Column(String(50), nullable=False)
    level = Column(String(20), nullable=False)
    scheduled_at = Column(UTCDateTime, nullable=False, index=True)
    duration = Column(Integer, nullable=False, default=60)  # minutos
    price = Column(Integer, nullable=False)  # unidades menores
    currency = Column(String(3), nullable=False)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)

    # Vinculación con el pago: is_paid solo si existe un Payment con status succeeded
    is_paid = Column(Boolean, nullable=False, default=False)
    payment_intent_id = Column(String(100), nullable=True)
    payment_error = Column(String(255), nullable=True)
    payment_failure_count = Column(Integer, nullable=False, default=0)
    accepted_at = Column(UTCDateTime, nullable=True)
    meeting_link = Column(String(255), nullable=True)

    decline_reason = Column(Text, nullable=True)
    cancel_reason = Column(Text, nullable=True)
    cancelled_by = Column(String(64), nullable=True)

    # Reporte de la clase (solo en completed)
    report_topics_covered = Column(Text, nullable=True)
    report_homework = Column(Text, nullable=True)
    report_notes = Column(Text, nullable=True)
    report_completed_at = Column(UTCDateTime, nullable=True)

    # Solicitud de reagendado abierta (solo en confirmed)
    reschedule_requested_by = Column(String(64), nullable=True)
    reschedule_requester_role = Column(String(20), nullable=True)
    reschedule_new_time = Column(UTCDateTime, nullable=True)
    reschedule_requested_at = Column(UTCDateTime, nullable=True)

    # Contador para compare-and-commit
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def has_open_reschedule(self) -> bool:
        return self.reschedule_requested_by is not None

    def __repr__(self):
        return f"<Booking(id={self.id}, student_id={self.student_id}, tutor_id={self.tutor_id}, status={self.status}, version={self.version})>"
