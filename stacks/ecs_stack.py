"""CDK stack running the orders app container on ECS with EC2 capacity."""

from typing import List

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_autoscaling as autoscaling,
    aws_ec2 as ec2,
    aws_ecr as ecr,
    aws_ecs as ecs,
    aws_elasticloadbalancingv2 as elbv2,
    aws_iam as iam,
    aws_logs as logs,
    aws_rds as rds,
    aws_secretsmanager as secretsmanager,
    Duration,
    RemovalPolicy,
    CfnOutput,
)

from stacks.config import OrdersAppConfig
from stacks.database_stack import DB_USERNAME

LOG_RETENTION_DAYS = logs.RetentionDays.ONE_WEEK
LOG_STREAM_PREFIX = "app"


def jdbc_url(host: str, port: str, db_name: str) -> str:
    return f"jdbc:postgresql://{host}:{port}/{db_name}"


class EcsStack(cdk.Stack):
    """ECS cluster, ASG capacity provider, task definition and service."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        vpc: ec2.IVpc,
        app_subnets: List[ec2.ISubnet],
        ecs_security_group: ec2.ISecurityGroup,
        db_secret: secretsmanager.ISecret,
        db: rds.IDatabaseInstance,
        repository: ecr.IRepository,
        target_group: elbv2.IApplicationTargetGroup,
        config: OrdersAppConfig,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.cluster = ecs.Cluster(
            self,
            "EcsCluster",
            vpc=vpc,
            cluster_name=config.ecs_cluster_name,
        )

        # Auto Scaling group backing the EC2 capacity
        asg = autoscaling.AutoScalingGroup(
            self,
            "EcsAsg",
            vpc=vpc,
            vpc_subnets=ec2.SubnetSelection(subnets=app_subnets),
            instance_type=ec2.InstanceType(config.ecs_instance_type),
            min_capacity=config.asg_min_capacity,
            max_capacity=config.asg_max_capacity,
            desired_capacity=config.asg_desired_capacity,
            machine_image=ecs.EcsOptimizedImage.amazon_linux2023(),
            security_group=ecs_security_group,
        )

        asg.role.add_managed_policy(
            iam.ManagedPolicy.from_aws_managed_policy_name(
                "service-role/AmazonEC2ContainerServiceforEC2Role"
            )
        )

        capacity_provider = ecs.AsgCapacityProvider(
            self,
            "AsgCapacityProvider",
            auto_scaling_group=asg,
            enable_managed_scaling=False,
            enable_managed_termination_protection=False,
        )
        self.cluster.add_asg_capacity_provider(capacity_provider)

        task_definition = ecs.Ec2TaskDefinition(
            self,
            "TaskDef",
            network_mode=ecs.NetworkMode.AWS_VPC,
        )

        log_group = logs.LogGroup(
            self,
            "OrdersAppLogGroup",
            log_group_name=f"/ecs/{self.stack_name}/app",
            retention=LOG_RETENTION_DAYS,
            removal_policy=RemovalPolicy.DESTROY,
        )

        # ECR pull and log delivery come from the managed policy;
        # secret injection needs GetSecretValue on the DB secret
        task_definition.obtain_execution_role().add_managed_policy(
            iam.ManagedPolicy.from_aws_managed_policy_name(
                "service-role/AmazonECSTaskExecutionRolePolicy"
            )
        )
        task_definition.obtain_execution_role().add_to_principal_policy(
            iam.PolicyStatement(
                actions=["secretsmanager:GetSecretValue"],
                resources=[db_secret.secret_arn],
            )
        )

        container = task_definition.add_container(
            "AppContainer",
            image=ecs.ContainerImage.from_ecr_repository(repository, config.image_tag),
            memory_reservation_mib=config.container_memory_reservation_mb,
            logging=ecs.LogDrivers.aws_logs(
                log_group=log_group,
                stream_prefix=LOG_STREAM_PREFIX,
            ),
            environment={
                "SPRING_DATASOURCE_URL": jdbc_url(
                    db.db_instance_endpoint_address,
                    db.db_instance_endpoint_port,
                    config.db_name,
                ),
                "SPRING_DATASOURCE_USERNAME": DB_USERNAME,
                "SERVER_PORT": str(config.app_port),
            },
            secrets={
                "SPRING_DATASOURCE_PASSWORD": ecs.Secret.from_secrets_manager(
                    db_secret, "password"
                ),
            },
        )

        container.add_port_mappings(
            ecs.PortMapping(
                container_port=config.app_port,
                protocol=ecs.Protocol.TCP,
            )
        )

        self.service = ecs.Ec2Service(
            self,
            "Service",
            cluster=self.cluster,
            task_definition=task_definition,
            desired_count=config.ec2_service_desired_count,
            health_check_grace_period=Duration.seconds(
                config.ec2_service_health_check_grace_period_seconds
            ),
            vpc_subnets=ec2.SubnetSelection(subnets=app_subnets),
            security_groups=[ecs_security_group],
            capacity_provider_strategies=[
                ecs.CapacityProviderStrategy(
                    capacity_provider=capacity_provider.capacity_provider_name,
                    weight=1,
                )
            ],
            placement_strategies=[
                ecs.PlacementStrategy.spread_across("attribute:ecs.availability-zone"),
                ecs.PlacementStrategy.spread_across_instances(),
            ],
        )

        # IP targets (awsvpc)
        self.service.attach_to_application_target_group(target_group)

        CfnOutput(
            self,
            "ClusterName",
            value=self.cluster.cluster_name,
            description="Name of the ECS cluster",
        )

        CfnOutput(
            self,
            "ServiceName",
            value=self.service.service_name,
            description="Name of the orders app ECS service",
        )
