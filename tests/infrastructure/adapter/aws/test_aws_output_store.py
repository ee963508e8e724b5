"""
Tests for the S3 output store.
"""

import io

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.response import StreamingBody
from botocore.stub import Stubber

from stackflow.infrastructure.adapter.aws.output_store import S3OutputStore


class TestS3OutputStore:
    """Test cases for S3OutputStore."""

    def setup_method(self):
        self.client = boto3.client(
            "s3",
            region_name="us-east-1",
            aws_access_key_id="testing",
            aws_secret_access_key="testing",
        )
        self.stubber = Stubber(self.client)
        self.store = S3OutputStore("outputs", client=self.client)

    def teardown_method(self):
        self.stubber.deactivate()

    def test_set(self):
        self.stubber.add_response(
            "put_object",
            {},
            {
                "Bucket": "outputs",
                "Key": "E1/S1/output.json",
                "Body": b'{"S1":{}}',
                "ContentType": "application/json",
            },
        )
        self.stubber.activate()

        self.store.set("E1/S1/output.json", b'{"S1":{}}')

        self.stubber.assert_no_pending_responses()

    def test_get(self):
        body = b'{"S1":{"StackName":"S1"}}'
        self.stubber.add_response(
            "get_object",
            {"Body": StreamingBody(io.BytesIO(body), len(body))},
            {"Bucket": "outputs", "Key": "E1/S1/output.json"},
        )
        self.stubber.activate()

        assert self.store.get("E1/S1/output.json") == body

    def test_get_missing(self):
        self.stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
        self.stubber.activate()

        with pytest.raises(KeyError):
            self.store.get("E1/S1/output.json")

    def test_get_access_denied_propagates(self):
        self.stubber.add_client_error("get_object", service_error_code="AccessDenied", http_status_code=403)
        self.stubber.activate()

        with pytest.raises(ClientError):
            self.store.get("E1/S1/output.json")
