from codelens_core.config import load_config
from codelens_core.service import ReviewService

__all__ = ["ReviewService", "load_config"]
