"""CDK stack for the orders app PostgreSQL database."""

from typing import List

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_ec2 as ec2,
    aws_rds as rds,
    Duration,
    RemovalPolicy,
    CfnOutput,
)

from stacks.config import ALLOWED_DB_ENGINE_VERSIONS, OrdersAppConfig

DB_USERNAME = "postgres"
DB_SECRET_NAME = "orders-app/rds/postgres"
DB_INSTANCE_IDENTIFIER = "orders-app-postgres"


def postgres_version(version: str) -> rds.PostgresEngineVersion:
    """Map an allowed engine version string to the RDS engine version."""
    if version not in ALLOWED_DB_ENGINE_VERSIONS:
        raise ValueError(f"Unsupported Postgres version: {version}")
    return rds.PostgresEngineVersion.of(version, version.split(".")[0])


class DatabaseStack(cdk.Stack):
    """Multi-AZ PostgreSQL instance with credentials in Secrets Manager."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        vpc: ec2.IVpc,
        db_subnets: List[ec2.ISubnet],
        db_security_group: ec2.ISecurityGroup,
        config: OrdersAppConfig,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        # Username is fixed, password is generated
        self.secret = rds.DatabaseSecret(
            self,
            "OrdersDbSecret",
            username=DB_USERNAME,
            secret_name=DB_SECRET_NAME,
        )

        subnet_group = rds.SubnetGroup(
            self,
            "DbSubnetGroup",
            description="Orders App DB subnets (isolated) in AZ A/B",
            vpc=vpc,
            vpc_subnets=ec2.SubnetSelection(subnets=db_subnets),
            subnet_group_name="orders-app-db-subnet-group",
        )

        self.db = rds.DatabaseInstance(
            self,
            "OrdersPostgres",
            database_name=config.db_name,
            instance_identifier=DB_INSTANCE_IDENTIFIER,
            engine=rds.DatabaseInstanceEngine.postgres(
                version=postgres_version(config.db_engine_version)
            ),
            vpc=vpc,
            subnet_group=subnet_group,
            security_groups=[db_security_group],
            publicly_accessible=False,
            credentials=rds.Credentials.from_secret(self.secret),
            instance_type=ec2.InstanceType(config.db_instance_class),
            multi_az=config.db_multi_az,
            allocated_storage=config.db_allocated_storage_gb,
            storage_type=rds.StorageType.GP3,
            storage_encrypted=True,
            backup_retention=Duration.days(config.db_backup_retention_days),
            copy_tags_to_snapshot=True,
            deletion_protection=config.db_deletion_protection,
            removal_policy=(
                RemovalPolicy.SNAPSHOT
                if config.db_deletion_protection
                else RemovalPolicy.DESTROY
            ),
        )

        CfnOutput(
            self,
            "DbEndpointAddress",
            value=self.db.db_instance_endpoint_address,
            description="Hostname of the orders database",
        )

        CfnOutput(
            self,
            "DbEndpointPort",
            value=self.db.db_instance_endpoint_port,
            description="Port of the orders database",
        )

        CfnOutput(
            self,
            "DbSecretArn",
            value=self.secret.secret_arn,
            description="ARN of the database credentials secret",
        )
