
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    ALLOWED_ORIGINS: str = "*"
    LOG_LEVEL: str = "INFO"

    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "chatkb"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "postgres"
    # Full URL wins over the DB_* parts (tests use sqlite+aiosqlite)
    DATABASE_URL: str = ""

    # Embeddings
    OPENAI_API_KEY: str = ""
    EMBED_MODEL: str = "text-embedding-3-large"
    EMBED_DIM: int = 1536
    EMBED_BATCH_SIZE: int = 100
    EMBED_BATCH_DELAY: float = 0.1
    EMBED_TIMEOUT: float = 10.0
    # strict=True: no zero vectors when the key is missing
    EMBED_STRICT: bool = False
    # "warn" or "strict"
    EMBED_DIMENSION_POLICY: str = "warn"

    # Chunking
    TOKENIZER_MODEL: str = "gpt-3.5-turbo"
    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 200

    # Retrieval
    MATCH_THRESHOLD: float = 0.5
    MATCH_COUNT: int = 5

    MAX_UPLOAD_MB: int = 10

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

settings = Settings()
