from pydantic_settings import BaseSettings, SettingsConfigDict

"""
Se carga automáticamente desde el archivo `.env` o las variables de entorno del sistema.
    - Define y carga la configuración principal de la aplicación desde variables de entorno.
    - Incluye parámetros para la base de datos, seguridad, Stripe y las políticas de reservas.
    - Configuracion global
"""
class Settings(BaseSettings):
    SQLALCHEMY_DATABASE_URI: str = "sqlite+aiosqlite:///./tutorbook.db"
    SECRET_KEY: str = "change-me-in-production"
    CRON_SECRET: str = "development-secret"

    STRIPE_SECRET_KEY: str = ""
    STRIPE_PUBLIC_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""

    # Políticas de reservas (parámetros del operador)
    CURRENCY: str = "gbp"
    HOLD_WINDOW_HOURS: float = 24
    MAX_PAYMENT_FAILURES: int = 2
    MIN_LEAD_HOURS: float = 1
    MAX_LEAD_DAYS: int = 365

    # Reintentos contra la pasarela de pago
    GATEWAY_MAX_ATTEMPTS: int = 3
    GATEWAY_BACKOFF_SECONDS: float = 0.5
    PAYMENT_TIMEOUT_SECONDS: float = 15

    MEETING_BASE_URL: str = "https://meet.jit.si"

    # Administrador inicial (opcional)
    ADMIN_ID: str = ""
    ADMIN_EMAIL: str = ""
    ADMIN_NAME: str = "Administrator"

    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://localhost:8080"]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
