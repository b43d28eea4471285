import hashlib
import logging
import secrets
from datetime import datetime

from tutorbook.configs.settings import settings

logger = logging.getLogger(__name__)


def generate_secure_room_link(booking_id: int, tutor_id: str, student_id: str, start_time: datetime) -> str:
    """Genera un link seguro y único para la clase"""

    # Hash único basado en la reserva, los participantes y el horario
    unique_data = f"{booking_id}-{tutor_id}-{student_id}-{int(start_time.timestamp())}"
    room_hash = hashlib.md5(unique_data.encode()).hexdigest()[:8]

    # Token aleatorio para que el enlace no sea adivinable
    security_token = secrets.token_hex(4)

    room_name = f"tutorbook-{booking_id}-{room_hash}-{security_token}"
    class_link = f"{settings.MEETING_BASE_URL.rstrip('/')}/{room_name}"

    logger.info(f"🔗 Room creado para la reserva {booking_id}: {room_name}")
    return class_link
