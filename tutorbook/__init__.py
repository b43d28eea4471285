"""
Este bloque define la configuración de inicio (lifespan) y creación de la aplicación FastAPI.
Incluye tareas que deben ejecutarse al arrancar la aplicación, como la creación de tablas y datos iniciales.
"""

from fastapi import FastAPI
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware

from tutorbook.configs.settings import settings
from tutorbook.cores.db import Base, engine
from tutorbook.cores.exceptions import BookingError, booking_error_handler

# Registra todas las tablas en Base.metadata
from tutorbook import models  # noqa: F401

from tutorbook.scripts.databases.create_user_admin import create_admin_user

from tutorbook.apis.booking_api import router as booking_router
from tutorbook.apis.payment_api import router as payment_router
from tutorbook.apis.cron_api import router as cron_router
from tutorbook.apis.notifications_api import router as notifications_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Función que se ejecuta al iniciar la aplicación.
    - Crea todas las tablas en la base de datos si no existen.
    - Inserta el administrador inicial si está configurado.
    - Al finalizar, continúa con la ejecución normal de la app (con `yield`).
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await create_admin_user()

    yield

    await engine.dispose()


def create_app() -> FastAPI:
    app = FastAPI(
        title="TutorBook",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Errores de dominio -> códigos HTTP
    app.add_exception_handler(BookingError, booking_error_handler)

    app.include_router(booking_router, prefix="/api/bookings", tags=["Bookings"])
    app.include_router(payment_router, prefix="/api/payments", tags=["Payments"])
    app.include_router(cron_router, prefix="/api/cron", tags=["Cron"])
    app.include_router(notifications_router, prefix="/api/notifications", tags=["Notifications"])

    return app
