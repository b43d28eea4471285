from sqlalchemy import Column, Integer, String, Text, ForeignKey
from tutorbook.cores.db import Base, UTCDateTime, utcnow


class RescheduleRequest(Base):
    """
    Historial de solicitudes de reagendado ya resueltas.
    La solicitud abierta vive en la propia reserva; al resolverse se archiva aquí.
    """
    __tablename__ = "reschedule_requests"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)

    requested_by = Column(String(64), nullable=False)
    requester_role = Column(String(20), nullable=False)
    requested_at = Column(UTCDateTime, nullable=False)

    # Horario anterior y horario propuesto
    previous_time = Column(UTCDateTime, nullable=False)
    new_time = Column(UTCDateTime, nullable=False)

    # Estado final: approved / declined
    status = Column(String(20), nullable=False)
    responded_by = Column(String(64), nullable=True)
    responded_at = Column(UTCDateTime, default=utcnow, nullable=False)
    decline_reason = Column(Text, nullable=True)

    def __repr__(self):
        return f"<RescheduleRequest(booking_id={self.booking_id}, status={self.status}, new_time={self.new_time})>"
