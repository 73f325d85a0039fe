from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://club_admin:club_secret_2026@db:5432/club_db"
    # "sql" for the Postgres-backed document store, "memory" for a process-local one
    STORE_BACKEND: str = "sql"
    JWT_SECRET: str = "clubhouse-jwt-secret-change-in-production-2026"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_MINUTES: int = 480
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]
    AUDIT_RETENTION_DAYS: int = 30

    class Config:
        env_file = ".env"


settings = Settings()
