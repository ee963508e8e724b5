"""
Tests for factory functions.

This module tests the create factory function and backend creation.
"""

from unittest.mock import Mock

import boto3
import pytest

from stackflow import BackendType, Client, ExecutionOptions, create
from stackflow.domain.exception import ConfigurationError
from stackflow.infrastructure.adapter.aws.output_store import S3OutputStore
from stackflow.infrastructure.adapter.aws.stack_provider import CloudFormationProvider
from stackflow.infrastructure.adapter.in_memory.output_store import InMemoryOutputStore
from stackflow.infrastructure.adapter.in_memory.stack_provider import InMemoryStackProvider
from stackflow.infrastructure.adapter.sqlite.output_store import SQLiteOutputStore


class TestCreate:
    """Test cases for create factory function."""

    def setup_method(self):
        self.provider = InMemoryStackProvider()

    def test_create_in_memory_backend(self):
        client = create(BackendType.IN_MEMORY, self.provider, ExecutionOptions())

        assert isinstance(client, Client)
        assert isinstance(client.output_store, InMemoryOutputStore)

    def test_create_sqlite_backend(self, tmp_path):
        db_path = str(tmp_path / "outputs.db")

        client = create(BackendType.SQLITE, self.provider, ExecutionOptions(), db_path=db_path)

        assert isinstance(client.output_store, SQLiteOutputStore)
        assert client.output_store.db_path == db_path
        client.output_store.close()

    def test_sqlite_db_path_from_options(self):
        client = create(BackendType.SQLITE, self.provider, ExecutionOptions(db_path=":memory:"))

        assert client.output_store.db_path == ":memory:"

    def test_create_s3_backend(self):
        s3 = boto3.client("s3", region_name="us-east-1", aws_access_key_id="testing", aws_secret_access_key="testing")

        client = create(BackendType.S3, self.provider, ExecutionOptions(output_bucket="outputs"), s3_client=s3)

        assert isinstance(client.output_store, S3OutputStore)
        assert client.output_store.bucket == "outputs"
        assert client.output_store.client is s3

    def test_s3_requires_bucket(self):
        with pytest.raises(ConfigurationError):
            create(BackendType.S3, self.provider, ExecutionOptions())

    def test_default_provider(self):
        client = create(BackendType.IN_MEMORY, execution_options=ExecutionOptions())

        assert isinstance(client.engine.interpreter.provider, CloudFormationProvider)

    def test_options_from_environment(self, monkeypatch):
        monkeypatch.setenv("STACKFLOW_DESCRIBE_INTERVAL", "3")

        client = create(BackendType.IN_MEMORY, self.provider)

        assert client.engine.execution_options.describe_interval == 3

    def test_sleep_forwarded(self):
        sleep = Mock()

        client = create(BackendType.IN_MEMORY, self.provider, ExecutionOptions(), sleep=sleep)

        assert client.engine.sleep is sleep

    def test_unsupported_backend(self):
        with pytest.raises(ValueError, match="Unsupported backend"):
            create("temporal", self.provider, ExecutionOptions())
