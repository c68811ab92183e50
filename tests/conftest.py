"""Shared fixtures for CDK stack tests."""

from typing import Any, Callable, Dict

import aws_cdk as cdk
import pytest

from stacks.config import load_config
from stacks.orders_app import build_orders_app

TEST_ENV = cdk.Environment(region="us-east-1")

EC2_CONTEXT = {
    "appJarUrl": "https://artifacts.example.com/orders/app-1.0.0.jar",
    "amiId": "ami-0123456789abcdef0",
}

ECS_CONTEXT = {"computeMode": "ecs"}


@pytest.fixture
def ec2_context() -> Dict[str, Any]:
    """Minimal valid context for ec2 mode."""
    return dict(EC2_CONTEXT)


@pytest.fixture
def build_stacks() -> Callable[..., Dict[str, cdk.Stack]]:
    """Build the full stack graph from context values in a fresh app."""

    def _build(context: Dict[str, Any]) -> Dict[str, cdk.Stack]:
        app = cdk.App()
        return build_orders_app(app, load_config(context), TEST_ENV)

    return _build


@pytest.fixture(scope="module")
def ec2_stacks() -> Dict[str, cdk.Stack]:
    app = cdk.App()
    return build_orders_app(app, load_config(EC2_CONTEXT), TEST_ENV)


@pytest.fixture(scope="module")
def ecs_stacks() -> Dict[str, cdk.Stack]:
    app = cdk.App()
    return build_orders_app(app, load_config(ECS_CONTEXT), TEST_ENV)
