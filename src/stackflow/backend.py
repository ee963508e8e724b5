from enum import Enum


class BackendType(Enum):
    """Supported output document backends."""

    IN_MEMORY = "in_memory"
    SQLITE = "sqlite"
    S3 = "s3"
