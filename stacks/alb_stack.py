"""CDK stack for the internal application load balancer."""

from typing import List

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_ec2 as ec2,
    aws_elasticloadbalancingv2 as elbv2,
    CfnOutput,
)

from stacks.config import OrdersAppConfig

LISTENER_PORT = 80
HEALTHY_HTTP_CODES = "200-399"


class AlbStack(cdk.Stack):
    """Internal ALB reached only through the API Gateway VPC link."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        vpc: ec2.IVpc,
        subnets: List[ec2.ISubnet],
        alb_security_group: ec2.ISecurityGroup,
        config: OrdersAppConfig,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.alb = elbv2.ApplicationLoadBalancer(
            self,
            "OrdersAlb",
            load_balancer_name="orders-app-alb",
            vpc=vpc,
            internet_facing=False,
            vpc_subnets=ec2.SubnetSelection(subnets=subnets),
            security_group=alb_security_group,
        )

        # awsvpc tasks register by IP, ASG instances by instance id
        target_type = elbv2.TargetType.IP if config.is_ecs else elbv2.TargetType.INSTANCE

        self.target_group = elbv2.ApplicationTargetGroup(
            self,
            "OrdersTg",
            target_group_name="orders-app-tg",
            vpc=vpc,
            port=config.app_port,
            protocol=elbv2.ApplicationProtocol.HTTP,
            target_type=target_type,
            health_check=elbv2.HealthCheck(
                enabled=True,
                path=config.health_check_path,
                healthy_http_codes=HEALTHY_HTTP_CODES,
            ),
        )

        # Not opened to 0.0.0.0/0; the VPC link SG rule lives in the network stack
        self.http_listener = self.alb.add_listener(
            "HttpListener",
            port=LISTENER_PORT,
            protocol=elbv2.ApplicationProtocol.HTTP,
            open=False,
            default_target_groups=[self.target_group],
        )

        CfnOutput(
            self,
            "AlbDnsName",
            value=self.alb.load_balancer_dns_name,
            description="DNS name of the internal ALB",
        )

        CfnOutput(
            self,
            "TargetGroupArn",
            value=self.target_group.target_group_arn,
            description="ARN of the orders app target group",
        )
