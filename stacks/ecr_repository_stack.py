"""CDK stack for the container image repository used in ECS mode."""

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_ecr as ecr,
    RemovalPolicy,
    CfnOutput,
)

from stacks.config import OrdersAppConfig


class EcrRepositoryStack(cdk.Stack):
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        config: OrdersAppConfig,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.repository = ecr.Repository(
            self,
            "AppRepository",
            repository_name=config.ecr_repository_name,
            removal_policy=RemovalPolicy.DESTROY,
            empty_on_delete=True,
        )

        CfnOutput(
            self,
            "EcrRepositoryUri",
            value=self.repository.repository_uri,
            description="URI to push orders app images to",
        )
