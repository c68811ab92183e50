"""Tests for stack wiring and the CDK entry point."""

import json
import os
import subprocess
import sys
from pathlib import Path

import aws_cdk as cdk
import pytest

from stacks.config import load_config
from stacks.orders_app import build_orders_app

PROJECT_ROOT = Path(__file__).resolve().parents[1]

SHARED_ROLES = {"network", "database", "alb", "cognito", "api", "monitoring"}


def _synth(context):
    app = cdk.App()
    stacks = build_orders_app(app, load_config(context), cdk.Environment(region="us-east-1"))
    app.synth()
    return stacks


def _dependency_ids(stack):
    return {dependency.stack_name for dependency in stack.dependencies}


def test_ec2_mode_stacks(ec2_stacks):
    assert set(ec2_stacks) == SHARED_ROLES | {"ami_builder", "compute"}
    assert {stack.stack_name for stack in ec2_stacks.values()} == {
        "OrdersApp-Network",
        "OrdersApp-Database",
        "OrdersApp-Alb",
        "OrdersApp-Cognito",
        "OrdersApp-Api",
        "OrdersApp-Monitoring",
        "OrdersApp-AmiBuilder",
        "OrdersApp-Compute",
    }


def test_ecs_mode_stacks(ecs_stacks):
    assert set(ecs_stacks) == SHARED_ROLES | {"ecr_repository", "ecs"}
    assert ecs_stacks["ecs"].stack_name == "OrdersApp-Ecs"
    assert ecs_stacks["ecr_repository"].stack_name == "OrdersApp-EcrRepository"


def test_stack_prefix(build_stacks):
    stacks = build_stacks({"computeMode": "ecs", "stackPrefix": "Blue"})

    assert all(stack.stack_name.startswith("Blue-") for stack in stacks.values())


def test_all_stacks_share_region(ec2_stacks):
    assert {stack.region for stack in ec2_stacks.values()} == {"us-east-1"}


def test_ec2_dependency_graph(ec2_context):
    """Stacks depend only on stacks earlier in the graph."""
    stacks = _synth(ec2_context)

    assert _dependency_ids(stacks["network"]) == set()
    assert _dependency_ids(stacks["cognito"]) == set()
    assert _dependency_ids(stacks["database"]) == {"OrdersApp-Network"}
    assert _dependency_ids(stacks["alb"]) == {"OrdersApp-Network"}
    assert _dependency_ids(stacks["api"]) >= {
        "OrdersApp-Network",
        "OrdersApp-Alb",
        "OrdersApp-Cognito",
    }
    assert _dependency_ids(stacks["monitoring"]) >= {
        "OrdersApp-Alb",
        "OrdersApp-Database",
    }
    assert _dependency_ids(stacks["compute"]) >= {
        "OrdersApp-Network",
        "OrdersApp-Database",
        "OrdersApp-Alb",
        "OrdersApp-Cognito",
    }
    assert _dependency_ids(stacks["ami_builder"]) == {"OrdersApp-Network"}


def test_ecs_dependency_graph():
    stacks = _synth({"computeMode": "ecs"})

    assert _dependency_ids(stacks["ecr_repository"]) == set()
    assert _dependency_ids(stacks["ecs"]) >= {
        "OrdersApp-Network",
        "OrdersApp-Database",
        "OrdersApp-Alb",
        "OrdersApp-EcrRepository",
    }


def _run_app(tmp_path, context):
    env = {
        **os.environ,
        "CDK_CONTEXT_JSON": json.dumps(context),
        "CDK_OUTDIR": str(tmp_path),
        "CDK_DEFAULT_REGION": "us-east-1",
    }
    return subprocess.run(
        [sys.executable, "app.py"],
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        env=env,
        timeout=600,
    )


def test_app_rejects_invalid_config(tmp_path):
    result = _run_app(tmp_path, {"computeMode": "ecs", "dbEngineVersion": "15.0"})

    assert result.returncode == 1
    assert "Configuration error: Invalid dbEngineVersion" in result.stderr
    assert "Allowed values: 16.8, 16.9, 17.6, 17.7" in result.stderr


def test_app_reports_missing_parameter(tmp_path):
    result = _run_app(tmp_path, {"amiId": "ami-0abc"})

    assert result.returncode == 1
    assert "Missing required context: appJarUrl" in result.stderr


def test_app_rejects_invalid_stack_prefix(tmp_path):
    result = _run_app(tmp_path, {"computeMode": "ecs", "stackPrefix": "orders_app"})

    assert result.returncode == 1
    assert "Configuration error: Invalid stackPrefix" in result.stderr
    assert "Traceback" not in result.stderr


@pytest.mark.parametrize(
    "context,expected_stack",
    [
        ({"computeMode": "ecs"}, "OrdersApp-Ecs"),
        ({"appJarUrl": "https://example.com/app.jar", "amiId": "ami-0abc"}, "OrdersApp-Compute"),
    ],
)
def test_app_synthesizes(tmp_path, context, expected_stack):
    result = _run_app(tmp_path, context)

    assert result.returncode == 0, result.stderr
    assert (tmp_path / f"{expected_stack}.template.json").exists()
