from sqlalchemy import Column, Integer, ForeignKey, String, UniqueConstraint
from tutorbook.cores.db import Base, UTCDateTime, utcnow


class TutorRate(Base):
    """Tarifa por hora del tutor para un nivel, en unidades menores (peniques)."""
    __tablename__ = "tutor_rates"

    id = Column(Integer, primary_key=True, index=True)
    tutor_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    level = Column(String(20), nullable=False)
    hourly_rate = Column(Integer, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("tutor_id", "level", name="uq_tutor_rates_tutor_level"),)

    def __repr__(self):
        return f"<TutorRate(tutor_id={self.tutor_id}, level={self.level}, hourly_rate={self.hourly_rate})>"
