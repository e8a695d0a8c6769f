from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENV: str = "dev"                # "dev" / "staging" / "prod"
    SERVICE_NAME: str = "cakeshop"
    ENABLE_ADMIN: bool = True       # mounts /api/v1/admin routes

    class Config:
        env_file = ".env"
        extra="ignore"

admin_config = Settings()
