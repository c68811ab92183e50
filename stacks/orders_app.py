"""Wires the orders app stacks together in dependency order."""

import logging
from typing import Dict

import aws_cdk as cdk

from stacks.alb_stack import AlbStack
from stacks.ami_builder_stack import AmiBuilderStack
from stacks.api_stack import ApiStack
from stacks.cognito_stack import CognitoStack
from stacks.compute_stack import ComputeStack
from stacks.config import OrdersAppConfig
from stacks.database_stack import DatabaseStack
from stacks.ecr_repository_stack import EcrRepositoryStack
from stacks.ecs_stack import EcsStack
from stacks.monitoring_stack import MonitoringStack
from stacks.network_stack import NetworkStack

logger = logging.getLogger(__name__)

APP_TAG = "orders-app"


def build_orders_app(
    app: cdk.App, config: OrdersAppConfig, env: cdk.Environment
) -> Dict[str, cdk.Stack]:
    """Declare every stack for the configured compute mode.

    Network feeds the database, load balancer and API; compute (EC2 or ECS)
    and monitoring come last because they consume the target group and the
    database.

    Args:
        app: The CDK app to add stacks to.
        config: Validated deployment configuration.
        env: Account/region for every stack. The region must be concrete
            because the EC2 machine image is keyed by it.

    Returns:
        The stacks keyed by role: ``network``, ``database``, ``alb``,
        ``cognito``, ``api``, ``monitoring`` plus ``ami_builder`` and
        ``compute`` (ec2 mode) or ``ecr_repository`` and ``ecs`` (ecs mode).
    """
    prefix = config.stack_prefix
    logger.info("Building %s stacks in %s mode", prefix, config.compute_mode)

    stacks: Dict[str, cdk.Stack] = {}

    network = NetworkStack(app, f"{prefix}-Network", env=env, config=config)
    stacks["network"] = network

    database = DatabaseStack(
        app,
        f"{prefix}-Database",
        env=env,
        vpc=network.vpc,
        db_subnets=network.db_subnets,
        db_security_group=network.db_security_group,
        config=config,
    )
    stacks["database"] = database

    alb = AlbStack(
        app,
        f"{prefix}-Alb",
        env=env,
        vpc=network.vpc,
        subnets=network.app_subnets,
        alb_security_group=network.alb_security_group,
        config=config,
    )
    stacks["alb"] = alb

    cognito = CognitoStack(app, f"{prefix}-Cognito", env=env)
    stacks["cognito"] = cognito

    stacks["api"] = ApiStack(
        app,
        f"{prefix}-Api",
        env=env,
        vpc=network.vpc,
        app_subnets=network.app_subnets,
        vpc_link_security_group=network.vpc_link_security_group,
        alb_listener=alb.http_listener,
        issuer_uri=cognito.issuer_uri,
        audience=cognito.audience,
        config=config,
    )

    stacks["monitoring"] = MonitoringStack(
        app,
        f"{prefix}-Monitoring",
        env=env,
        target_group=alb.target_group,
        db=database.db,
        alarm_email=config.alarm_email,
    )

    if config.is_ec2:
        stacks["ami_builder"] = AmiBuilderStack(
            app,
            f"{prefix}-AmiBuilder",
            env=env,
            vpc=network.vpc,
            build_subnet=network.public_subnets[0],
            jar_key=config.jar_key,
        )

        stacks["compute"] = ComputeStack(
            app,
            f"{prefix}-Compute",
            env=env,
            vpc=network.vpc,
            app_subnets=network.app_subnets,
            app_security_group=network.app_security_group,
            target_group=alb.target_group,
            database=database,
            issuer_uri=cognito.issuer_uri,
            audience=cognito.audience,
            config=config,
        )
    else:
        ecr_repository = EcrRepositoryStack(
            app, f"{prefix}-EcrRepository", env=env, config=config
        )
        stacks["ecr_repository"] = ecr_repository

        stacks["ecs"] = EcsStack(
            app,
            f"{prefix}-Ecs",
            env=env,
            vpc=network.vpc,
            app_subnets=network.app_subnets,
            ecs_security_group=network.app_security_group,
            db_secret=database.secret,
            db=database.db,
            repository=ecr_repository.repository,
            target_group=alb.target_group,
            config=config,
        )

    cdk.Tags.of(app).add("App", APP_TAG)
    cdk.Tags.of(app).add("ComputeMode", config.compute_mode)

    return stacks
