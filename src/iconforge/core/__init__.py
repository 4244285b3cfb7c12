"""Core functionality for icon generation.

- **config**: Pydantic Settings configuration (``ICONFORGE_`` prefix)
- **replicate_client**: Hosted image model client with result caching
- **generation_service**: Generate-and-record orchestration
- **repository**: SQLAlchemy persistence for generation records
- **icon_prompts** / **icon_set**: Icon prompt compilation and the
  sequential four-icon loop
"""

from iconforge.core.config import IconforgeConfig, config
from iconforge.core.errors import (
    AppError,
    ExternalServiceError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)

__all__ = [
    "AppError",
    "ExternalServiceError",
    "IconforgeConfig",
    "NotFoundError",
    "RateLimitError",
    "ValidationError",
    "config",
]
