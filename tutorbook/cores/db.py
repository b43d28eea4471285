"""
Configuración de SQLAlchemy para trabajar con base de datos de forma asincrónica.
Soporta SQLite (desarrollo y pruebas) y cualquier motor con driver async en producción.
"""

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import DateTime, TypeDecorator
from tutorbook.configs.settings import settings

# Obtener la URL de la base de datos desde settings (.env)
DATABASE_URL = settings.SQLALCHEMY_DATABASE_URI

# Configurar argumentos según el tipo de base de datos
connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    # SQLite requiere check_same_thread=False para async
    connect_args = {"check_same_thread": False}

engine = create_async_engine(
    DATABASE_URL,
    connect_args=connect_args,
    echo=False
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False
)

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Guarda fechas como UTC sin zona y las devuelve con tzinfo=UTC.
    SQLite pierde la zona horaria, así que se normaliza en ambos sentidos.
    """
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
