"""Pytest configuration and fixtures for integration tests."""

import json
import os
import shutil
import subprocess
import sys
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Generator

import boto3
import pytest
from botocore.exceptions import BotoCoreError, ClientError

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def check_aws_credentials():
    """Check if AWS credentials are configured and provide guidance if not."""
    try:
        sts = boto3.client("sts")
        identity = sts.get_caller_identity()
        return True, identity
    except (BotoCoreError, ClientError):
        print("\n" + "=" * 80)
        print("AWS CREDENTIALS NOT CONFIGURED")
        print("=" * 80)
        print("\nIntegration tests require AWS credentials to deploy resources.")
        print("\nQuick Setup:\n")
        print("1. Run aws configure and enter your credentials")
        print("2. Verify: aws sts get-caller-identity")
        print("3. Run tests: pytest -m integration\n")
        print("SKIP INTEGRATION TESTS:")
        print("  pytest    # CDK and unit tests only (no AWS)\n")
        print("=" * 80)
        return False, None


def _cdk_command():
    """Prefer an installed cdk, fall back to npx."""
    return ["cdk"] if shutil.which("cdk") else ["npx", "cdk"]


def _cdk_env(aws_region: str) -> Dict[str, str]:
    venv_python = sys.executable
    return {
        **os.environ,
        "CDK_DEFAULT_REGION": aws_region,
        "PATH": f"{os.path.dirname(venv_python)}:{os.environ.get('PATH', '')}",
    }


@pytest.fixture(scope="session")
def aws_region() -> str:
    """Get AWS region from environment or AWS config."""
    region = os.environ.get("AWS_REGION")
    if region:
        return region

    session_region = boto3.session.Session().region_name
    return session_region or "us-east-1"


@pytest.fixture(scope="session")
def stack_prefix() -> str:
    """Unique stack prefix so parallel runs do not collide."""
    timestamp = int(time.time())
    unique_id = str(uuid.uuid4())[:8]
    return f"IntegTest{timestamp}-{unique_id}"


@pytest.fixture(scope="session", autouse=True)
def verify_aws_credentials():
    """Verify AWS credentials before running any integration tests."""
    has_creds, identity = check_aws_credentials()
    if not has_creds:
        pytest.exit("AWS credentials not configured. See guidance above.", returncode=2)
    print(f"\nAWS Account: {identity['Account']}")
    print(f"AWS User/Role: {identity['Arn']}\n")


@pytest.fixture(scope="session")
def deployed_cognito_stack(
    stack_prefix: str, aws_region: str, tmp_path_factory
) -> Generator[Dict[str, Any], None, None]:
    """
    Deploy only the Cognito stack and destroy it afterwards.

    ECS mode is used so no artifact or AMI context is needed to synth the app.

    Yields:
        Dictionary containing CloudFormation stack outputs
    """
    stack_name = f"{stack_prefix}-Cognito"
    outputs_file = tmp_path_factory.mktemp("cdk") / "outputs.json"
    context_args = ["-c", "computeMode=ecs", "-c", f"stackPrefix={stack_prefix}"]

    print(f"\nDeploying integration test stack: {stack_name}")
    deploy_result = subprocess.run(
        [
            *_cdk_command(),
            "deploy",
            stack_name,
            "--exclusively",
            "--require-approval",
            "never",
            "--outputs-file",
            str(outputs_file),
            *context_args,
        ],
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        env=_cdk_env(aws_region),
    )

    if deploy_result.returncode != 0:
        pytest.fail(
            f"CDK deployment failed:\nSTDOUT: {deploy_result.stdout}\nSTDERR: {deploy_result.stderr}"
        )

    with open(outputs_file, "r") as f:
        outputs_data = json.load(f)

    stack_outputs = outputs_data.get(stack_name, {})
    print(f"Stack deployed successfully. Outputs: {stack_outputs}")

    yield stack_outputs

    print(f"\nDestroying integration test stack: {stack_name}")
    destroy_result = subprocess.run(
        [*_cdk_command(), "destroy", stack_name, "--exclusively", "--force", *context_args],
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        env=_cdk_env(aws_region),
    )

    if destroy_result.returncode != 0:
        print(
            f"WARNING: Stack destruction failed:\nSTDOUT: {destroy_result.stdout}\nSTDERR: {destroy_result.stderr}"
        )


@pytest.fixture(scope="session")
def cognito_client(aws_region: str):
    """Create Cognito Identity Provider client."""
    return boto3.client("cognito-idp", region_name=aws_region)
