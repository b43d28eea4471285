from datetime import datetime, timedelta, UTC
from jose import JWTError, jwt

from tutorbook.configs.settings import settings
from tutorbook.cores.exceptions import BookingError


SECRET_KEY = settings.SECRET_KEY
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24


class InvalidToken(BookingError):
    status_code = 401


"""
La emisión de tokens pertenece al proveedor de identidad.
`create_access_token` existe para desarrollo y pruebas con la misma firma HS256.
"""
def create_access_token(data: dict, expires_delta: timedelta = None):
    to_encode = data.copy()
    expire = datetime.now(UTC) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"type": "access", "exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise InvalidToken("Invalid or expired token")

    if not payload.get("user_id") or not payload.get("role"):
        raise InvalidToken("Invalid data in token")
    return payload
