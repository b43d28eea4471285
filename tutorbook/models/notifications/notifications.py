from sqlalchemy import Column, Integer, DateTime, String
from sqlalchemy.sql import func
from tutorbook.cores.db import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(100), nullable=False, index=True)
    message = Column(String(500), nullable=False)
    type = Column(String(50), nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Notification(title={self.title}, message={self.message}, type={self.type})>"
