from django.conf import settings
from django.core.exceptions import ValidationError

ALLOWED_IMAGE_TYPES = ('image/jpeg', 'image/png', 'image/gif', 'image/webp')


def validate_upload_size(upload):
    """Reject uploads larger than LOOT_UPLOAD_MAX_BYTES."""
    limit = getattr(settings, 'LOOT_UPLOAD_MAX_BYTES', 600 * 1024)
    if upload.size > limit:
        raise ValidationError(f"File too large: {upload.size} bytes (limit {limit})")


def validate_image_type(upload):
    """Reject uploads whose declared content type is not an image."""
    content_type = getattr(upload, 'content_type', None)
    if content_type is None and not getattr(upload, '_committed', True):
        content_type = getattr(upload.file, 'content_type', None)
    # Files already in storage carry no content type
    if content_type is None:
        return
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationError(f"Unsupported file type: {content_type}")
