#!/usr/bin/env python3
"""CDK app entry point for the orders app infrastructure."""

import logging
import os
import sys

import aws_cdk as cdk

from stacks.config import ConfigError, load_config_from_app
from stacks.orders_app import build_orders_app

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "WARNING").upper(),
    format="%(levelname)s %(name)s: %(message)s",
)

app = cdk.App()

try:
    config = load_config_from_app(app)
except ConfigError as e:
    print(f"Configuration error: {e}", file=sys.stderr)
    sys.exit(1)

build_orders_app(
    app,
    config,
    env=cdk.Environment(
        account=os.getenv("CDK_DEFAULT_ACCOUNT"),
        region=os.getenv("CDK_DEFAULT_REGION", "us-east-1"),  # Default to us-east-1
    ),
)

app.synth()
