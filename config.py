import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Loan database (SQLite)
    database_file: str = os.getenv("LOAN_DB_FILE", "loans.db")

    # Patron service
    patron_service_url: str = os.getenv("PATRON_SERVICE_URL", "http://localhost:8081")
    patron_status_path: str = os.getenv("PATRON_STATUS_PATH", "/api/usuarios/{user_id}/status")

    # Stock service
    stock_service_url: str = os.getenv("STOCK_SERVICE_URL", "http://localhost:8082")
    stock_read_path: str = os.getenv("STOCK_READ_PATH", "/api/libros/{book_id}/stock")
    stock_reserve_path: str = os.getenv("STOCK_RESERVE_PATH", "/api/libros/{book_id}/decrease-stock")
    stock_release_path: str = os.getenv("STOCK_RELEASE_PATH", "/api/libros/{book_id}/increase-stock")

    # Outbound HTTP
    http_timeout: float = float(os.getenv("HTTP_TIMEOUT", "5"))
    http_connect_timeout: float = float(os.getenv("HTTP_CONNECT_TIMEOUT", "2"))
    http_retries: int = int(os.getenv("HTTP_RETRIES", "3"))
    http_backoff: float = float(os.getenv("HTTP_BACKOFF", "0.25"))

    # Release a reservation (or re-take a released unit) when the loan store fails
    compensate_on_persist_failure: bool = _env_bool("COMPENSATE_ON_PERSIST_FAILURE", "True")

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Loan Service")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    debug: bool = _env_bool("DEBUG", "False")
    environment: str = os.getenv("ENVIRONMENT", "development")


settings = Settings()
