import os
from functools import lru_cache
from urllib.parse import quote_plus

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    app_name: str = "VOAT Job Board"

    database_url: str | None = None
    mssql_server: str = "localhost"
    mssql_port: int = 1433
    mssql_database: str = "JobPortal"
    mssql_user: str | None = None
    mssql_password: str | None = None
    mssql_odbc_driver: str = "ODBC Driver 17 for SQL Server"

    jwt_secret: str
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    mail_server: str = "smtp.gmail.com"
    mail_port: int = 587
    mail_use_tls: bool = True
    mail_use_ssl: bool = False
    mail_username: str | None = None
    mail_password: str | None = None
    mail_default_sender: str | None = None
    mail_suppress_send: bool = False

    frontend_url: str = "http://localhost:5173"
    frontend_urls: str | None = None
    upload_folder: str = "uploads"

    model_config = SettingsConfigDict(
        env_file=os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("JWT_SECRET must be set to a non-empty value")
        return value

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        raw_conn = (
            f"DRIVER={{{self.mssql_odbc_driver}}};"
            f"SERVER={self.mssql_server},{self.mssql_port};"
            f"DATABASE={self.mssql_database};"
            f"UID={self.mssql_user or ''};"
            f"PWD={self.mssql_password or ''};"
            "TrustServerCertificate=yes;"
        )
        return f"mssql+pyodbc:///?odbc_connect={quote_plus(raw_conn)}"

    @property
    def cors_origins(self) -> list[str]:
        env_origins = self.frontend_urls or self.frontend_url
        return [origin.strip() for origin in env_origins.split(',') if origin.strip()]

    def flask_config(self) -> dict:
        return {
            'JWT_SECRET': self.jwt_secret,
            'JWT_ALGORITHM': self.jwt_algorithm,
            'ACCESS_TOKEN_EXPIRE_MINUTES': self.access_token_expire_minutes,
            'MAIL_SERVER': self.mail_server,
            'MAIL_PORT': self.mail_port,
            'MAIL_USE_TLS': self.mail_use_tls,
            'MAIL_USE_SSL': self.mail_use_ssl,
            'MAIL_USERNAME': self.mail_username,
            'MAIL_PASSWORD': self.mail_password,
            'MAIL_DEFAULT_SENDER': self.mail_default_sender or self.mail_username,
            'MAIL_SUPPRESS_SEND': self.mail_suppress_send,
            'FRONTEND_URL': self.frontend_url.rstrip('/'),
            'UPLOAD_FOLDER': self.upload_folder,
        }


@lru_cache()
def get_settings() -> Settings:
    return Settings()
