import enum


class UserRole(str, enum.Enum):
    STUDENT = "student"
    TUTOR = "tutor"
    PARENT = "parent"
    ADMIN = "admin"
    # Actor interno para callbacks de la pasarela y tareas programadas
    SYSTEM = "system"


REQUESTER_ROLES = {UserRole.STUDENT, UserRole.PARENT}
