import os
import logging
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

logger = logging.getLogger(__name__)

MB = 1024 * 1024


class Settings(BaseModel):
    # --- Vision model ---
    openai_api_key: Optional[str] = None
    openai_api_url: str = "https://api.openai.com/v1/chat/completions"
    vision_model: str = "gpt-4.1"
    max_output_tokens: int = 6000
    temperature: float = 0.1
    api_timeout: float = 60.0

    # --- Download ---
    download_timeout: float = 60.0
    download_attempts: int = Field(default=3, ge=1)

    # --- Resolution tiers ---
    default_dpi: int = 300
    large_file_dpi: int = 200
    huge_file_dpi: int = 150
    large_file_bytes: int = 5 * MB
    huge_file_bytes: int = 15 * MB
    many_pages: int = 8
    too_many_pages: int = 15

    # --- Rendering and batching ---
    render_mode: Literal["sequential", "parallel"] = "sequential"
    render_workers: int = Field(default=4, ge=1)
    page_render_timeout: float = 120.0
    batch_size: int = Field(default=3, ge=1)

    @classmethod
    def from_env(cls) -> "Settings":
        env = {
            "openai_api_key": os.getenv("OPENAI_API_KEY"),
            "openai_api_url": os.getenv("OPENAI_API_URL"),
            "vision_model": os.getenv("VISION_MODEL"),
            "max_output_tokens": os.getenv("MAX_OUTPUT_TOKENS"),
            "temperature": os.getenv("MODEL_TEMPERATURE"),
            "api_timeout": os.getenv("API_CALL_TIMEOUT"),
            "download_timeout": os.getenv("DOWNLOAD_TIMEOUT"),
            "batch_size": os.getenv("BATCH_SIZE"),
            "render_mode": os.getenv("RENDER_MODE"),
            "render_workers": os.getenv("RENDER_WORKERS"),
            "page_render_timeout": os.getenv("PAGE_RENDER_TIMEOUT"),
        }
        settings = cls(**{key: value for key, value in env.items() if value})

        if not settings.openai_api_key:
            logger.critical("OPENAI_API_KEY is missing from environment!")
        return settings
