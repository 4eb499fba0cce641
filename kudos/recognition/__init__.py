"""Recognition records and the create-recognition workflow.

The workflow itself lives in kudos.recognition.service.
"""

from kudos.recognition.models import (
    RECOGNITION_COLLECTION,
    AbuseSummary,
    CreateRecognitionCommand,
    CreateRecognitionResult,
    Recognition,
    RecognitionStatus,
    Visibility,
)

__all__ = [
    "RECOGNITION_COLLECTION",
    "AbuseSummary",
    "CreateRecognitionCommand",
    "CreateRecognitionResult",
    "Recognition",
    "RecognitionStatus",
    "Visibility",
]
