"""
Infrastructure layer - external system integrations.
Keeps business logic clean from implementation details.
"""

from .image_store import CloudinaryImageStore, ImageStore, PassthroughImageStore, UploadError
from .redis_client import close_redis, get_redis

__all__ = [
    'CloudinaryImageStore', 'ImageStore', 'PassthroughImageStore', 'UploadError',
    'close_redis', 'get_redis',
]
