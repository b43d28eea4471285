"""
Errores de dominio de reservas y pagos.

Cada error lleva su código HTTP para que el manejador global de FastAPI
los traduzca sin lógica adicional en las rutas.
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


class BookingError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, code: str = None):
        self.message = message
        self.code = code or self.__class__.__name__
        super().__init__(message)


class Unauthorized(BookingError):
    """El actor no puede ejecutar esta acción sobre la reserva."""
    status_code = status.HTTP_403_FORBIDDEN


class InvalidTransition(BookingError):
    """El evento no es válido para el estado actual."""
    status_code = status.HTTP_409_CONFLICT


class InvalidBookingState(InvalidTransition):
    pass


class StaleState(BookingError):
    """Conflicto de concurrencia optimista: refrescar y reintentar."""
    status_code = status.HTTP_409_CONFLICT


class ValidationError(BookingError):
    status_code = 422


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class PaymentAlreadyActive(BookingError):
    status_code = status.HTTP_409_CONFLICT


class RescheduleAlreadyPending(BookingError):
    status_code = status.HTTP_409_CONFLICT


class PaymentGatewayError(BookingError):
    """Error transitorio de la pasarela; se reintenta con backoff."""
    status_code = status.HTTP_502_BAD_GATEWAY


class InvalidWebhook(BookingError):
    """Firma o cuerpo del webhook inválido."""


class ExpiredHold(BookingError):
    """Interno: la ventana de retención de una reserva aceptada venció."""
    status_code = status.HTTP_409_CONFLICT


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    logger.info(f"{exc.code} en {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "detail": exc.message, "code": exc.code},
    )
