from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from decimal import Decimal
from pydantic import field_validator

class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'servistech_user'
    POSTGRES_PASSWORD: str = 'servistech_pass'
    POSTGRES_DB: str = 'servistech_db'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432

    # Redis settings
    REDIS_HOST: str = 'redis'
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None

    # JWT settings (los tokens los emite el servicio de autenticación)
    APP_SECRET_STRING: str = 'your-super-secret-key-here-change-in-production-2024'
    ALGORITHM: str = 'HS256'

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # Exchange rate sources
    BCV_URL: str = 'https://www.bcv.org.ve/'
    BCV_VERIFY_SSL: bool = False  # El certificado del BCV suele estar incompleto
    BINANCE_API_URL: str = 'https://api.binance.com/api/v3/ticker/price'
    BINANCE_SYMBOL: str = 'USDTUSD'
    PARALLEL_DIFFERENTIAL: Decimal = Decimal('1.15')
    RATE_FETCH_TIMEOUT_SECONDS: float = 30.0
    RATE_CACHE_TTL_SECONDS: int = 3600
    DEFAULT_OFFICIAL_RATE: Decimal = Decimal('64.85')
    DEFAULT_PARALLEL_RATE: Decimal = Decimal('74.58')
    RATE_SYNC_ENABLED: bool = True
    RATE_SYNC_HOUR: int = 8

    # Invoicing
    INVOICE_RATE_KIND: str = 'official'
    FOREIGN_CASH_SURCHARGE_RATE: Decimal = Decimal('0.03')  # IGTF

    # Daily targets
    TARGET_DESIRED_MARGIN: Decimal = Decimal('0.30')
    FIXED_EXPENSE_DAYS_PER_MONTH: int = 30
    TARGET_RECALC_HOUR: int = 23

    # Audit trail: "celery" despacha tareas, "log" solo registra en el log
    AUDIT_SINK: str = 'celery'

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", "RATE_SYNC_ENABLED", "BCV_VERIFY_SSL", mode="before")
    @classmethod
    def parse_bool(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("TARGET_DESIRED_MARGIN")
    @classmethod
    def validate_margin(cls, v):
        if v < 0 or v >= 1:
            raise ValueError("TARGET_DESIRED_MARGIN debe estar en el rango [0, 1)")
        return v

    @field_validator("INVOICE_RATE_KIND")
    @classmethod
    def validate_rate_kind(cls, v):
        if v not in ("official", "parallel"):
            raise ValueError("INVOICE_RATE_KIND debe ser 'official' o 'parallel'")
        return v

    @field_validator("AUDIT_SINK")
    @classmethod
    def validate_audit_sink(cls, v):
        if v not in ("celery", "log"):
            raise ValueError("AUDIT_SINK debe ser 'celery' o 'log'")
        return v

settings = Settings()
