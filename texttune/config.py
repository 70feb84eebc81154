"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    app_name: str = "TextTune"
    app_version: str = "0.1.0"
    host: str = "0.0.0.0"
    port: int = 4000
    debug: bool = False
    log_level: str = "INFO"
    log_file: str = "logs/texttune.log"
    cors_origins: List[str] = ["http://localhost:4000"]

    # Storage
    database_path: str = "storage/texttune.db"
    storage_dir: str = "storage/audio"

    # Auth (dev login tokens)
    jwt_secret: str = "dev-secret-change-me"
    jwt_algorithm: str = "HS256"
    token_ttl_days: int = 7

    # Generation limits
    default_duration_seconds: float = 30
    max_duration_seconds: float = 30

    # Rendering
    render_backend: str = "auto"  # "auto", "space", "inference" or "synth"
    render_timeout_seconds: float = 600  # 0 disables the timeout
    progress_interval_seconds: float = 0.5

    # Hugging Face (only when render_backend resolves to space/inference)
    hf_space_id: Optional[str] = None
    hf_api_token: Optional[str] = None
    hf_model_id: str = "stabilityai/stable-audio-open-1.0"
    hf_api_url: Optional[str] = None
    hf_inference_endpoint: Optional[str] = None
    inference_max_retries: int = 3

    # Prompt translation (optional)
    google_translate_api_key: Optional[str] = None
    google_translate_endpoint: str = "https://translation.googleapis.com/language/translate/v2"
    translate_source_lang: str = "ko"
    translate_target_lang: str = "en"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
