"""Per-type rotation strategies and the rotation function entry point."""

from .base import RotationStrategy
from .generic import GenericStrategy
from .database import DocumentDbStrategy, PasswordRotationStrategy, RdsCredentialsStrategy
from .api_key import AwsApiKeyStrategy
from .registry import SECRET_TYPE_TAG, STRATEGY_REGISTRY, get_strategy, is_rotation_supported

__all__ = [
    "RotationStrategy",
    "GenericStrategy",
    "PasswordRotationStrategy",
    "RdsCredentialsStrategy",
    "DocumentDbStrategy",
    "AwsApiKeyStrategy",
    "SECRET_TYPE_TAG",
    "STRATEGY_REGISTRY",
    "get_strategy",
    "is_rotation_supported",
]
