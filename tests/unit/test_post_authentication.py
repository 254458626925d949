"""
Tests for Post-Authentication Lambda trigger
"""

from unittest.mock import MagicMock, patch

import pytest

from src.handlers.post_authentication import lambda_handler
from tests.unit.fixtures import make_profile


@pytest.fixture
def cognito_event():
    """Sample Cognito Post Authentication event"""
    return {
        "version": "1",
        "triggerSource": "PostAuthentication_Authentication",
        "region": "us-east-1",
        "userPoolId": "us-east-1_TEST123",
        "userName": "google_123456789",
        "callerContext": {
            "awsSdkVersion": "aws-sdk-js-2.1055.0",
            "clientId": "1example23456789",
        },
        "request": {
            "userAttributes": {
                "sub": "a1b2c3d4-e5f6-7890-abcd-ef1234567890",
                "email": "user@example.com",
                "email_verified": "true",
            },
        },
        "response": {},
    }


@pytest.fixture
def lambda_context():
    """Mock Lambda context"""
    context = MagicMock()
    context.function_name = "test-post-auth"
    context.aws_request_id = "test-request-id"
    return context


def test_first_sign_in_creates_profile(cognito_event, lambda_context, dynamodb_tables):
    """A new user gets an active member profile"""
    result = lambda_handler(cognito_event, lambda_context)

    # Should return event unmodified
    assert result == cognito_event

    items = dynamodb_tables["user_profiles"].scan()["Items"]
    assert len(items) == 1
    assert items[0]["authUserId"] == "a1b2c3d4-e5f6-7890-abcd-ef1234567890"
    assert items[0]["email"] == "user@example.com"
    assert items[0]["role"] == "member"


def test_guest_profile_claimed_on_sign_in(cognito_event, lambda_context, dynamodb_tables):
    """A pending guest profile with the same email is linked and activated"""
    guest = make_profile("guest", status="pending", email="user@example.com")
    del guest["authUserId"]
    dynamodb_tables["user_profiles"].put_item(Item=guest)

    lambda_handler(cognito_event, lambda_context)

    stored = dynamodb_tables["user_profiles"].get_item(Key={"userId": guest["userId"]})["Item"]
    assert stored["status"] == "active"
    assert stored["authUserId"] == "a1b2c3d4-e5f6-7890-abcd-ef1234567890"
    assert dynamodb_tables["user_profiles"].scan()["Count"] == 1


def test_missing_sub_returns_event(cognito_event, lambda_context, dynamodb_tables):
    """No sub means nothing to resolve"""
    del cognito_event["request"]["userAttributes"]["sub"]

    assert lambda_handler(cognito_event, lambda_context) == cognito_event
    assert dynamodb_tables["user_profiles"].scan()["Count"] == 0


def test_storage_error_does_not_block_sign_in(cognito_event, lambda_context):
    """Errors are logged and the event is still returned"""
    with patch("src.handlers.post_authentication.get_identity_service") as mock_service:
        mock_service.return_value.resolve_user_identity.side_effect = RuntimeError("boom")

        result = lambda_handler(cognito_event, lambda_context)

    assert result == cognito_event
