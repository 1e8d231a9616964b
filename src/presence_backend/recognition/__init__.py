"""
Remote face recognition service access.
"""

from .client import FaceRecognitionClient, IdentityIndexClient, ImageUpload

__all__ = [
    'FaceRecognitionClient',
    'IdentityIndexClient',
    'ImageUpload'
]
