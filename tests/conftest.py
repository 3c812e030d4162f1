"""Pytest configuration and fixtures."""

import os
import pytest
from unittest.mock import patch

# Set environment variables before imports
os.environ["STAGE"] = "test"
os.environ["STYLEGOV_LOCK_USE_DYNAMODB"] = "false"
os.environ["STYLEGOV_LOCK_TABLE_NAME"] = "stylegov-test-locks"
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"

from stylegov.execution.retry_policy import RetryPolicy  # noqa: E402
from stylegov.models.base import utc_now  # noqa: E402
from stylegov.models.replacement import Checkpoint  # noqa: E402


class FakeCheckpointProvider:
    """Checkpoint provider that records titles and can be told to fail."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.titles: list[str] = []

    async def create_checkpoint(self, title: str) -> Checkpoint:
        self.titles.append(title)
        if self.error is not None:
            raise self.error
        return Checkpoint(title=title, timestamp=utc_now())


class FakeMutationApplier:
    """Mutation applier with scripted per-element behavior.

    Args:
        failures: element_id -> reason. Those elements always fail.
        flaky: element_id -> number of transient failures before success.
        fail_all: If set, every element fails with this reason.
    """

    def __init__(
        self,
        failures: dict | None = None,
        flaky: dict | None = None,
        fail_all: str | None = None,
    ):
        self.failures = failures or {}
        self.flaky = dict(flaky or {})
        self.fail_all = fail_all
        self.calls: list[str] = []
        self.applied: list[str] = []

    async def apply_replacement(self, element_id: str, source_id: str, target_id: str):
        self.calls.append(element_id)

        if self.fail_all:
            raise RuntimeError(self.fail_all)
        if element_id in self.failures:
            raise RuntimeError(self.failures[element_id])
        if self.flaky.get(element_id, 0) > 0:
            self.flaky[element_id] -= 1
            raise TimeoutError("Request timeout")

        self.applied.append(element_id)
        return None


class FakeResolver:
    """Resolver that knows a fixed set of assignment ids."""

    def __init__(self, known: set | None = None):
        self.known = known if known is not None else set()

    async def resolve(self, assignment_id, operation_type) -> bool:
        return assignment_id in self.known


@pytest.fixture
def aws_credentials():
    """Mock AWS credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"


@pytest.fixture
def lock_table(aws_credentials):
    """Create mocked DynamoDB lock table."""
    import boto3
    from moto import mock_aws

    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")

        table = dynamodb.create_table(
            TableName="stylegov-test-locks",
            KeySchema=[
                {"AttributeName": "PK", "KeyType": "HASH"},
                {"AttributeName": "SK", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "PK", "AttributeType": "S"},
                {"AttributeName": "SK", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )

        table.wait_until_exists()

        yield table


@pytest.fixture
def instant_retry_policy():
    """Retry policy with the default attempt count and no waiting."""
    return RetryPolicy(max_attempts=3, delays=(0.0,))


@pytest.fixture
def no_sleep():
    """Patch the retry backoff sleep and record requested delays."""
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    with patch("stylegov.execution.retry_policy._sleep", side_effect=fake_sleep):
        yield delays


@pytest.fixture
def checkpoint_provider():
    """Create a working checkpoint provider."""
    return FakeCheckpointProvider()


@pytest.fixture
def make_applier():
    """Factory for scripted mutation appliers."""
    def _create(**kwargs):
        return FakeMutationApplier(**kwargs)

    return _create


@pytest.fixture
def make_checkpoint_provider():
    """Factory for checkpoint providers, optionally failing."""
    def _create(error: Exception | None = None):
        return FakeCheckpointProvider(error=error)

    return _create


@pytest.fixture
def resolver():
    """Create a resolver that knows the sample style ids."""
    return FakeResolver({"S:primary", "S:brand", "T:spacing-1", "T:spacing-2"})


@pytest.fixture
def element_ids():
    """Factory for ordered element ids."""
    def _create(count: int, prefix: str = "node"):
        return [f"{prefix}-{i}" for i in range(1, count + 1)]

    return _create


@pytest.fixture
def make_engine(checkpoint_provider, instant_retry_policy):
    """Factory for engines wired to fakes and a private lock registry."""
    from stylegov.execution.batch_scheduler import BatchSchedulerConfig
    from stylegov.services.operation_lock import DocumentLockRegistry
    from stylegov.services.replacement_engine import ReplacementConfig, ReplacementEngine

    def _create(
        applier=None,
        checkpoints=None,
        resolver=None,
        lock_registry=None,
        scheduler: BatchSchedulerConfig | None = None,
    ):
        return ReplacementEngine(
            checkpoint_provider=checkpoints or checkpoint_provider,
            mutation_applier=applier or FakeMutationApplier(),
            resolver=resolver,
            config=ReplacementConfig(
                scheduler=scheduler or BatchSchedulerConfig(),
                retry_policy=instant_retry_policy,
            ),
            lock_registry=lock_registry or DocumentLockRegistry(use_dynamodb=False),
        )

    return _create
