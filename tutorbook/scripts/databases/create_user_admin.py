from sqlalchemy.future import select
import logging

from tutorbook.configs.settings import settings
from tutorbook.cores.db import async_session
from tutorbook.models.common.role import UserRole
from tutorbook.models.users.user import User

logger = logging.getLogger(__name__)


async def create_admin_user():
    async with async_session() as db:
        if not settings.ADMIN_ID or not settings.ADMIN_EMAIL:
            logger.info("ADMIN_ID or ADMIN_EMAIL not defined; skipping administrator seed.")
            return

        result = await db.execute(select(User).where(User.id == settings.ADMIN_ID))
        if result.scalar_one_or_none():
            logger.info("The administrator user already exists.")
            return

        db.add(User(
            id=settings.ADMIN_ID,
            email=settings.ADMIN_EMAIL,
            display_name=settings.ADMIN_NAME,
            role=UserRole.ADMIN.value,
        ))
        await db.commit()
        logger.info(f"Administrator user created: {settings.ADMIN_EMAIL}")
