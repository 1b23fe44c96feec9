"""
Application settings.

Every tunable of the censor pipeline lives here so the magic numbers of the
matcher and the pixelation renderer can be overridden from the environment
(``FACECENSOR_*``) or a ``.env`` file.
"""

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

from facecensor.image_processor import CensorMode, PixelationParams


DEFAULT_REFERENCE_DIR = Path(__file__).parent.parent / "reference_faces"


class Settings(BaseSettings):
    """Censor pipeline settings"""

    model_config = SettingsConfigDict(
        env_prefix="FACECENSOR_",
        env_file=".env",
        extra="ignore",
    )

    # Target acquisition
    target_label: str = "TARGET"
    reference_dir: Path = DEFAULT_REFERENCE_DIR
    reference_images: List[str] = []  # empty = every image in reference_dir

    # Matching
    match_threshold: float = 0.6
    detector_model: str = "hog"  # "hog" (CPU) or "cnn" (GPU)

    # Censoring
    default_censor_mode: CensorMode = CensorMode.PIXELATED
    block_ratio: float = 0.12
    max_block_ratio: float = 0.08
    min_block_size: int = 2

    # Temporary file host
    upload_url: str = "https://tmpfiles.org/api/v1/upload"
    upload_timeout: float = 30.0

    # Server
    log_level: str = "INFO"
    cors_origins: List[str] = ["*"]

    @property
    def pixelation(self) -> PixelationParams:
        return PixelationParams(
            block_ratio=self.block_ratio,
            max_block_ratio=self.max_block_ratio,
            min_block=self.min_block_size,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
