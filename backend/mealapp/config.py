from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+psycopg://user:password@db/dbname"

    AWS_ENDPOINT_URL: str
    AWS_ACCESS_KEY_ID: str
    AWS_SECRET_ACCESS_KEY: str
    AWS_REGION_NAME: str = "ap-northeast-1"
    S3_BUCKET_NAME: str = "meal-images"
    SIGNED_URL_EXPIRES_SECONDS: int = 600

    CELERY_BROKER_URL: str = "redis://redis:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://redis:6379/0"

    OPENAI_API_KEY: str
    OPENAI_MODEL: str = "o3"
    OPENAI_IMAGE_DETAIL: str = "high"
    OPENAI_TIMEOUT_SECONDS: float = 120.0

    ANALYZE_BATCH_SIZE: int = 5
    ANALYZE_SCHEDULE_SECONDS: float = 60.0
    PROCESSING_LEASE_SECONDS: int = 60 * 15
    PROMPT_VERSION: str = "colab-v1"

    LOG_LEVEL: str = "INFO"

    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: str = "authenticated"

    class Config:
        env_file = ".env"

settings = Settings()
