import secrets
from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import Depends, HTTPException, Header

from tutorbook.cores.db import async_session
from tutorbook.cores.exceptions import NotFound
from tutorbook.cores.security import Actor
from tutorbook.cores.token import InvalidToken, verify_token
from tutorbook.configs.settings import settings
from tutorbook.external.payment_gateway import StripePaymentGateway
from tutorbook.services.user.user_service import load_actor

"""
Este archivo define la función `get_db`, que proporciona una sesión de base de datos asincrónica.
Se usa como dependencia en rutas de FastAPI para interactuar con la base de datos sin preocuparse
por abrir o cerrar la conexión manualmente.
"""
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    session = async_session()
    try:
        yield session
    finally:
        await session.close()


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Token not provided")
    try:
        scheme, token = authorization.split()
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token format")
    if scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid token format")
    return token


async def auth_required(authorization: Optional[str] = Header(None)) -> dict:
    return verify_token(_bearer_token(authorization))


async def get_current_actor(
    payload: dict = Depends(auth_required),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """El rol del token debe coincidir con el registrado para el usuario."""
    try:
        actor = await load_actor(db, payload["user_id"])
    except NotFound:
        raise InvalidToken("Unknown user")
    if actor.role.value != payload["role"]:
        raise InvalidToken("Token role does not match the user")
    return actor


async def cron_required(authorization: Optional[str] = Header(None)):
    if not secrets.compare_digest(_bearer_token(authorization), settings.CRON_SECRET):
        raise HTTPException(status_code=401, detail="Invalid cron secret")


def if_match_version(if_match: Optional[str] = Header(None)) -> Optional[int]:
    """Versión esperada de la reserva enviada en el header If-Match."""
    if if_match is None:
        return None
    try:
        return int(if_match.strip().strip('"').removeprefix("W/").strip('"'))
    except ValueError:
        raise HTTPException(status_code=422, detail="If-Match must contain the booking version")


_gateway = None


def get_payment_gateway():
    global _gateway
    if _gateway is None:
        _gateway = StripePaymentGateway()
    return _gateway
