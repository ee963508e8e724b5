import logging
from typing import Any

import boto3
from botocore.exceptions import ClientError

from stackflow.application.port import OutputStore

logger = logging.getLogger(__name__)

MISSING_KEY_CODES = ("NoSuchKey", "404", "NotFound")


class S3OutputStore(OutputStore):
    """Keeps output documents as JSON objects in one S3 bucket, keyed by path."""

    def __init__(self, bucket: str, client: Any = None):
        """
        :param bucket: The bucket holding every execution's documents
        :type bucket: str
        :param client: Optional S3 client, defaults to ``boto3.client("s3")``
        """
        self.bucket = bucket
        self.client = client if client is not None else boto3.client("s3")

    def set(self, key: str, value: bytes):
        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=value,
            ContentType="application/json",
        )
        logger.debug("Put s3://%s/%s", self.bucket, key)

    def get(self, key: str) -> bytes:
        """
        Retrieve a document by path.

        :raises KeyError: If the object does not exist
        """
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in MISSING_KEY_CODES:
                raise KeyError(f"Key '{key}' not found") from e
            raise
        return response["Body"].read()
