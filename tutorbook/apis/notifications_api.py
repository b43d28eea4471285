from fastapi import APIRouter, Depends, Query
from tutorbook.schemas.notifications.notification_schema import (
    GetNotificationsResponse, MarkAsReadResponse
)
from tutorbook.services.notifications.notification_service import (
    get_user_notifications,
    mark_notification_as_read
)
from tutorbook.apis.deps import get_current_actor, get_db
from tutorbook.cores.security import Actor
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter()

@router.get("/mis-notificaciones", response_model=GetNotificationsResponse)
async def obtener_notificaciones(
    limit: int = Query(10, ge=1, le=50, description="Número máximo de notificaciones"),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """
    Obtiene las notificaciones del usuario autenticado
    """
    notifications = await get_user_notifications(db, actor.id, limit)

    return {
        "success": True,
        "message": "Notifications retrieved",
        "data": notifications
    }

@router.put("/marcar-leida/{notification_id}", response_model=MarkAsReadResponse)
async def marcar_como_leida(
    notification_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """
    Marca una notificación como leída
    """
    await mark_notification_as_read(db, actor.id, notification_id)

    return {
        "success": True,
        "message": "Notification marked as read"
    }
