from sqlalchemy import Column, String, ForeignKey
from sqlalchemy.orm import validates
from tutorbook.cores.db import Base, UTCDateTime, utcnow
from tutorbook.cores.exceptions import ValidationError
from tutorbook.models.common.role import UserRole


class User(Base):
    __tablename__ = "users"

    # El id lo emite el proveedor de identidad
    id = Column(String(64), primary_key=True, index=True)
    email = Column(String(120), unique=True, nullable=False, index=True)
    display_name = Column(String(200), nullable=False)
    role = Column(String(20), nullable=False, index=True)
    # Solo estudiantes; los hijos de un padre se derivan de esta columna
    parent_id = Column(String(64), ForeignKey("users.id"), nullable=True, index=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @validates("role")
    def validate_role(self, key, value):
        role = UserRole(value)
        if role == UserRole.SYSTEM:
            raise ValidationError("The system role cannot be assigned to a user")
        # El rol es inmutable una vez asignado
        if self.role is not None and self.role != role.value:
            raise ValidationError("User role cannot be changed")
        return role.value

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
