from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.apis.deps import cron_required, get_db
from tutorbook.services.bookings.booking_service import expire_holds
from tutorbook.services.events.event_service import dispatch_pending_events

router = APIRouter(dependencies=[Depends(cron_required)])


@router.post("/expire-holds")
async def expirar_retenciones(db: AsyncSession = Depends(get_db)):
    expired = await expire_holds(db)
    return {"success": True, "message": "Expired holds processed", "data": {"expired": expired}}


@router.post("/dispatch-events")
async def despachar_eventos(db: AsyncSession = Depends(get_db)):
    delivered = await dispatch_pending_events(db)
    return {"success": True, "message": "Pending events dispatched", "data": {"delivered": delivered}}
