import os
from django.conf import settings
from rest_framework import serializers

from .models import OutputFormat


def validate_document(upload):
    """Extension allow-list and size ceiling, checked before anything is stored."""
    ext = os.path.splitext(upload.name or "")[1].lower()
    allowed = settings.ALLOWED_EXTENSIONS
    if ext not in allowed:
        raise serializers.ValidationError(
            f"Invalid file type. Allowed types: {', '.join(allowed)}"
        )
    if upload.size is not None and upload.size > settings.MAX_FILE_SIZE:
        raise serializers.ValidationError(
            f"File too large. Maximum file size is {settings.MAX_FILE_SIZE // (1024 * 1024)}MB"
        )
    return upload


class DocumentField(serializers.FileField):
    default_error_messages = {
        "required": "No file uploaded",
        "empty": "The uploaded file is empty.",
        "invalid": "No file uploaded",
    }

    def __init__(self, **kwargs):
        kwargs.setdefault("validators", [validate_document])
        super().__init__(**kwargs)


class PdfConversionSerializer(serializers.Serializer):
    file = DocumentField()


class PngConversionSerializer(serializers.Serializer):
    file = DocumentField()
    dpi = serializers.IntegerField(required=False, allow_null=True, min_value=1, max_value=1200)


class BatchConversionSerializer(serializers.Serializer):
    files = serializers.ListField(
        child=DocumentField(),
        allow_empty=False,
        max_length=settings.MAX_BATCH_FILES,
        error_messages={
            "required": "No files uploaded",
            "empty": "No files uploaded",
            "max_length": f"Too many files. At most {settings.MAX_BATCH_FILES} files per batch",
        },
    )
    format = serializers.ChoiceField(choices=OutputFormat.choices, default=OutputFormat.PDF.value)
    dpi = serializers.IntegerField(required=False, allow_null=True, min_value=1, max_value=1200)
