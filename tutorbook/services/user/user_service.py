from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from tutorbook.cores.exceptions import NotFound, ValidationError
from tutorbook.cores.security import Actor
from tutorbook.models.common.educational_level import Level
from tutorbook.models.common.role import UserRole
from tutorbook.models.teachers.price import TutorRate
from tutorbook.models.users.user import User

logger = logging.getLogger(__name__)

# ==================== VALIDACIONES ====================

async def _get_user(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFound(f"User {user_id} not found")
    return user

async def _validate_unique_email(db: AsyncSession, email: str):
    result = await db.execute(select(User.id).where(User.email == email))
    if result.scalar_one_or_none():
        raise ValidationError("Email already registered")

async def _validate_parent(db: AsyncSession, parent_id: str):
    parent = await _get_user(db, parent_id)
    if parent.role != UserRole.PARENT.value:
        raise ValidationError("parent_id must reference a user with role parent")

def _parse_role(role) -> UserRole:
    try:
        return UserRole(role)
    except ValueError:
        raise ValidationError(f"Unknown role '{role}'")

def _parse_level(level) -> Level:
    try:
        return Level(level)
    except ValueError:
        raise ValidationError(f"Unknown level '{level}'")

# ==================== OPERACIONES ====================

async def create_user(
    db: AsyncSession,
    user_id: str,
    email: str,
    display_name: str,
    role,
    parent_id: str = None,
) -> User:
    """Registra localmente un usuario emitido por el proveedor de identidad."""
    role = _parse_role(role)
    await _validate_unique_email(db, email)

    if parent_id is not None:
        if role != UserRole.STUDENT:
            raise ValidationError("Only students can reference a parent")
        await _validate_parent(db, parent_id)

    user = User(id=user_id, email=email, display_name=display_name, role=role.value, parent_id=parent_id)
    db.add(user)
    await db.commit()

    logger.info(f"Usuario creado: {user_id} ({role.value})")
    return user


async def set_tutor_rate(db: AsyncSession, tutor_id: str, level, hourly_rate: int) -> TutorRate:
    level = _parse_level(level)
    tutor = await _get_user(db, tutor_id)
    if tutor.role != UserRole.TUTOR.value:
        raise ValidationError("Rates can only be set for tutors")
    if hourly_rate <= 0:
        raise ValidationError("Hourly rate must be positive")

    result = await db.execute(
        select(TutorRate).where(TutorRate.tutor_id == tutor_id, TutorRate.level == level.value)
    )
    rate = result.scalar_one_or_none()
    if rate:
        rate.hourly_rate = hourly_rate
    else:
        rate = TutorRate(tutor_id=tutor_id, level=level.value, hourly_rate=hourly_rate)
        db.add(rate)
    await db.commit()
    return rate


async def get_tutor_rate(db: AsyncSession, tutor_id: str, level) -> int:
    level = _parse_level(level)
    result = await db.execute(
        select(TutorRate.hourly_rate).where(TutorRate.tutor_id == tutor_id, TutorRate.level == level.value)
    )
    rate = result.scalar_one_or_none()
    if rate is None:
        raise ValidationError(f"Tutor does not teach at level {level.value}")
    return rate


async def get_children_ids(db: AsyncSession, parent_id: str) -> frozenset:
    result = await db.execute(select(User.id).where(User.parent_id == parent_id))
    return frozenset(result.scalars().all())


async def load_actor(db: AsyncSession, user_id: str) -> Actor:
    user = await _get_user(db, user_id)
    role = UserRole(user.role)
    children = await get_children_ids(db, user.id) if role == UserRole.PARENT else frozenset()
    return Actor(id=user.id, role=role, children_ids=children)
