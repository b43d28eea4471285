from dataclasses import dataclass, field

from tutorbook.models.common.role import UserRole


"""
Actor autenticado que recibe cada operación del núcleo.
No existe un contexto global de usuario: las rutas resuelven el actor a partir
del token y lo pasan explícitamente a los servicios.
"""
@dataclass(frozen=True)
class Actor:
    id: str
    role: UserRole
    # Solo para padres: ids de sus hijos registrados
    children_ids: frozenset = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(self, "role", UserRole(self.role))
        object.__setattr__(self, "children_ids", frozenset(self.children_ids))


SYSTEM_ACTOR = Actor(id="system", role=UserRole.SYSTEM)
