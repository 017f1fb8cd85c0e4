from typing import Optional
from urllib.parse import quote_plus
from pydantic_settings import BaseSettings
from pydantic import validator

class Settings(BaseSettings):
    PROJECT_NAME: str = "ERP Site Agent"
    VERSION: str = "1.0.0"

    # Сервер
    HOST: str = "0.0.0.0"
    PORT: int = 3005

    # Токен для входящих запросов от сайта
    AGENT_TOKEN: str = "change-me-agent-token"

    # База данных ERP (SQL Server)
    DB_USER: str = "sa"
    DB_PASS: str = ""
    DB_SERVER: str = "localhost"
    DB_NAME: str = "ERP"
    DB_DRIVER: str = "ODBC Driver 18 for SQL Server"
    DATABASE_URL: Optional[str] = None

    DB_POOL_SIZE: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_CONNECT_RETRY_DELAY: int = 5  # секунды

    @property
    def database_url(self) -> str:
        """URL подключения: DATABASE_URL или собранный из DB_* параметров"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"mssql+aioodbc://{quote_plus(self.DB_USER)}:{quote_plus(self.DB_PASS)}"
            f"@{self.DB_SERVER}/{self.DB_NAME}"
            f"?driver={quote_plus(self.DB_DRIVER)}&TrustServerCertificate=yes&Encrypt=no"
        )

    # Синхронизация с сайтом
    SITE_URL: str = "http://localhost:8080/api/stock-updates"
    SYNC_TOKEN: str = "change-me-sync-token"
    SYNC_ENABLED: bool = True
    SYNC_INTERVAL: float = 5.0   # секунды между тиками
    SYNC_TIMEOUT: float = 10.0   # таймаут отправки пакета

    # Курсор синхронизации
    CURSOR_FILE: str = "cursor.json"
    CURSOR_BOOTSTRAP_SECONDS: int = 60

    # Параметры заголовка заказа в ERP
    ORDER_STORE_CODE: int = 1
    ORDER_SELLER_CODE: int = 1
    ORDER_NOTE: str = "PEDIDO VIA SITE"
    ORDER_USER: str = "INTEGRACAO"
    CUSTOMER_NAME_MAX_LENGTH: int = 50
    DEFAULT_CUSTOMER_NAME: str = "CLIENTE WEB"

    # Настройки логирования
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = "logs/erp_agent.log"

    @validator("LOG_LEVEL")
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    class Config:
        case_sensitive = True
        env_file = ".env"

settings = Settings()
