"""CDK stack for the orders app VPC, subnets and security groups."""

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_ec2 as ec2,
    CfnOutput,
)

from stacks.config import OrdersAppConfig

# VPC layout
VPC_CIDR = "10.0.0.0/16"
MAX_AZS = 2
NAT_GATEWAYS = 2
SUBNET_CIDR_MASK = 24

PUBLIC_SUBNET_GROUP = "public"
APP_SUBNET_GROUP = "app"
DB_SUBNET_GROUP = "db"

ALB_LISTENER_PORT = 80
POSTGRES_PORT = 5432


class NetworkStack(cdk.Stack):
    """Three-tier VPC: public (ALB, NAT), app (instances, tasks), db (isolated)."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        config: OrdersAppConfig,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.vpc = ec2.Vpc(
            self,
            "OrdersAppVpc",
            vpc_name="orders-app-vpc-01",
            ip_addresses=ec2.IpAddresses.cidr(VPC_CIDR),
            max_azs=MAX_AZS,
            nat_gateways=NAT_GATEWAYS,
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name=PUBLIC_SUBNET_GROUP,
                    subnet_type=ec2.SubnetType.PUBLIC,
                    cidr_mask=SUBNET_CIDR_MASK,
                ),
                ec2.SubnetConfiguration(
                    name=APP_SUBNET_GROUP,
                    subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS,
                    cidr_mask=SUBNET_CIDR_MASK,
                ),
                ec2.SubnetConfiguration(
                    name=DB_SUBNET_GROUP,
                    subnet_type=ec2.SubnetType.PRIVATE_ISOLATED,
                    cidr_mask=SUBNET_CIDR_MASK,
                ),
            ],
        )

        self.public_subnets = self.vpc.select_subnets(
            subnet_group_name=PUBLIC_SUBNET_GROUP
        ).subnets
        self.app_subnets = self.vpc.select_subnets(
            subnet_group_name=APP_SUBNET_GROUP
        ).subnets
        self.db_subnets = self.vpc.select_subnets(
            subnet_group_name=DB_SUBNET_GROUP
        ).subnets

        # Security groups
        self.vpc_link_security_group = ec2.SecurityGroup(
            self,
            "VpcLinkSg",
            vpc=self.vpc,
            security_group_name="orders-app-sg-vpclink",
            description="SG used by API Gateway VPC Link ENIs",
        )

        self.alb_security_group = ec2.SecurityGroup(
            self,
            "AlbSg",
            vpc=self.vpc,
            security_group_name="orders-app-sg-alb",
            description="ALB security group for orders app",
        )

        # Shared by EC2 instances (ec2 mode) and awsvpc tasks (ecs mode)
        self.app_security_group = ec2.SecurityGroup(
            self,
            "AppSg",
            vpc=self.vpc,
            security_group_name="orders-app-sg-app",
            description="App security group (shared) for orders app",
        )

        self.db_security_group = ec2.SecurityGroup(
            self,
            "DbSg",
            vpc=self.vpc,
            security_group_name="orders-app-sg-db",
            description="DB security group (shared) for orders app",
        )

        # Ingress rules
        self.alb_security_group.add_ingress_rule(
            self.vpc_link_security_group,
            ec2.Port.tcp(ALB_LISTENER_PORT),
            "HTTP from API Gateway VPC Link",
        )

        self.app_security_group.add_ingress_rule(
            self.alb_security_group,
            ec2.Port.tcp(config.app_port),
            "App port from ALB",
        )

        self.db_security_group.add_ingress_rule(
            self.app_security_group,
            ec2.Port.tcp(POSTGRES_PORT),
            "Postgres from app",
        )

        CfnOutput(
            self,
            "VpcId",
            value=self.vpc.vpc_id,
            description="ID of the orders app VPC",
        )
