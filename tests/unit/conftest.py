"""
Test fixtures for Lambda function tests.

Provides common test data and mocked AWS resources.
"""

import os
from typing import Any, Dict, Generator

import boto3
import pytest
from moto import mock_aws

from src.utils.dynamodb import clear_all_overrides
from src.utils.identity import reset_identity_service
from tests.unit.fixtures import (
    make_appointment_type,
    make_availability_rules,
    make_profile,
)
from tests.unit.table_schemas import TABLE_ENV_VARS, TABLE_NAMES, create_all_tables


@pytest.fixture(autouse=True)
def isolated_services() -> Generator[None, None, None]:
    """Fresh identity cache and no table overrides for every test."""
    reset_identity_service()
    clear_all_overrides()
    yield
    reset_identity_service()
    clear_all_overrides()


@pytest.fixture
def aws_credentials() -> None:
    """Set fake AWS credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    # Multi-table design: set all table names
    for key, env_name in TABLE_ENV_VARS.items():
        os.environ[env_name] = TABLE_NAMES[key]
    os.environ["APP_TIMEZONE"] = "Asia/Seoul"
    os.environ["SITE_URL"] = "https://aiedulog.test"
    os.environ.pop("NOTIFICATION_FROM_EMAIL", None)


@pytest.fixture
def dynamodb_tables(aws_credentials: None) -> Generator[Dict[str, Any], None, None]:
    """Create all mock DynamoDB tables; yields accessor name -> table."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        yield create_all_tables(dynamodb)


@pytest.fixture
def s3_bucket(aws_credentials: None) -> Generator[Any, None, None]:
    """Create mock S3 bucket for report exports."""
    with mock_aws():
        s3 = boto3.client("s3", region_name="us-east-1")
        bucket_name = os.environ.get("EXPORTS_BUCKET", "test-exports-bucket")
        s3.create_bucket(Bucket=bucket_name)

        # Set environment variable for Lambda function
        os.environ["EXPORTS_BUCKET"] = bucket_name

        yield s3


@pytest.fixture
def lambda_context() -> Any:
    """Mock Lambda context."""

    class Context:
        function_name = "test-function"
        memory_limit_in_mb = 128
        invoked_function_arn = "arn:aws:lambda:us-east-1:123456789012:function:test-function"
        aws_request_id = "test-request-id"

    return Context()


@pytest.fixture
def user_profile(dynamodb_tables: Dict[str, Any]) -> Dict[str, Any]:
    """A signed-up member who books appointments."""
    profile = make_profile("student", fullName="Kim Minji", nickname="minji")
    dynamodb_tables["user_profiles"].put_item(Item=profile)
    return profile


@pytest.fixture
def instructor_profile(dynamodb_tables: Dict[str, Any]) -> Dict[str, Any]:
    """An active instructor."""
    profile = make_profile("teacher", role="instructor", fullName="Lee Seonsaeng")
    dynamodb_tables["user_profiles"].put_item(Item=profile)
    return profile


@pytest.fixture
def admin_profile(dynamodb_tables: Dict[str, Any]) -> Dict[str, Any]:
    """A platform admin (role stored on the profile)."""
    profile = make_profile("admin", role="admin", fullName="Park Admin")
    dynamodb_tables["user_profiles"].put_item(Item=profile)
    return profile


@pytest.fixture
def appointment_type(dynamodb_tables: Dict[str, Any], instructor_profile: Dict[str, Any]) -> Dict[str, Any]:
    """A 60-minute online consultation offered by the instructor."""
    item = make_appointment_type(instructor_profile["userId"], "consult")
    dynamodb_tables["appointment_types"].put_item(Item=item)
    return item


@pytest.fixture
def weekly_availability(dynamodb_tables: Dict[str, Any], instructor_profile: Dict[str, Any]) -> list[Dict[str, Any]]:
    """The instructor works 09:00-18:00 every day."""
    rules = make_availability_rules(instructor_profile["userId"])
    for rule in rules:
        dynamodb_tables["instructor_availability"].put_item(Item=rule)
    return rules
