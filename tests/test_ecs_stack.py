"""CDK tests for the ECS and ECR stacks (ecs mode)."""

import json

from aws_cdk.assertions import Template, Match
import pytest

from stacks.ecs_stack import jdbc_url


@pytest.fixture(scope="module")
def template(ecs_stacks):
    return Template.from_stack(ecs_stacks["ecs"])


@pytest.fixture(scope="module")
def ecr_template(ecs_stacks):
    return Template.from_stack(ecs_stacks["ecr_repository"])


def test_cluster_and_capacity_provider(template):
    """Verify the cluster runs on an unmanaged ASG capacity provider."""
    template.has_resource_properties(
        "AWS::ECS::Cluster",
        {"ClusterName": "ecsec2-cluster"},
    )
    template.has_resource_properties(
        "AWS::ECS::CapacityProvider",
        {
            "AutoScalingGroupProvider": Match.object_like(
                {"ManagedTerminationProtection": "DISABLED"}
            )
        },
    )
    template.resource_count_is("AWS::ECS::ClusterCapacityProviderAssociations", 1)


def test_container_instances(template):
    template.has_resource_properties(
        "AWS::AutoScaling::AutoScalingGroup",
        {"MinSize": "2", "MaxSize": "2", "DesiredCapacity": "2"},
    )
    assert "t3.small" in json.dumps(template.to_json())


def test_task_definition(template):
    """Verify awsvpc networking, container sizing, env and secret injection."""
    template.has_resource_properties(
        "AWS::ECS::TaskDefinition",
        {
            "NetworkMode": "awsvpc",
            "RequiresCompatibilities": ["EC2"],
            "ContainerDefinitions": [
                Match.object_like(
                    {
                        "Name": "AppContainer",
                        "MemoryReservation": 512,
                        "PortMappings": [
                            Match.object_like({"ContainerPort": 8080, "Protocol": "tcp"})
                        ],
                        "Environment": Match.array_with(
                            [
                                {
                                    "Name": "SPRING_DATASOURCE_USERNAME",
                                    "Value": "postgres",
                                }
                            ]
                        ),
                        "Secrets": [
                            Match.object_like({"Name": "SPRING_DATASOURCE_PASSWORD"})
                        ],
                        "LogConfiguration": Match.object_like(
                            {
                                "LogDriver": "awslogs",
                                "Options": Match.object_like(
                                    {"awslogs-stream-prefix": "app"}
                                ),
                            }
                        ),
                    }
                )
            ],
        },
    )


def test_log_group(template):
    template.has_resource_properties(
        "AWS::Logs::LogGroup",
        {"LogGroupName": "/ecs/OrdersApp-Ecs/app", "RetentionInDays": 7},
    )


def test_execution_role_reads_secret(template):
    template.has_resource_properties(
        "AWS::IAM::Policy",
        {
            "PolicyDocument": {
                "Statement": Match.array_with(
                    [
                        Match.object_like(
                            {"Action": "secretsmanager:GetSecretValue", "Effect": "Allow"}
                        )
                    ]
                )
            }
        },
    )


def test_service(template):
    """Verify desired count, capacity provider strategy, spread and ALB attachment."""
    template.has_resource_properties(
        "AWS::ECS::Service",
        {
            "DesiredCount": 2,
            "HealthCheckGracePeriodSeconds": 300,
            "CapacityProviderStrategy": [
                {"CapacityProvider": Match.any_value(), "Weight": 1}
            ],
            "PlacementStrategies": [
                {"Type": "spread", "Field": "attribute:ecs.availability-zone"},
                {"Type": "spread", "Field": "instanceId"},
            ],
            "LoadBalancers": [
                Match.object_like({"ContainerName": "AppContainer", "ContainerPort": 8080})
            ],
            "NetworkConfiguration": {
                "AwsvpcConfiguration": Match.object_like(
                    {"SecurityGroups": [Match.any_value()]}
                )
            },
        },
    )


def test_configured_values(build_stacks):
    stacks = build_stacks(
        {
            "computeMode": "ecs",
            "ecsClusterName": "orders-cluster",
            "imageTag": "1.2.1",
            "containerMemoryReservationMB": "1024",
            "ec2ServiceDesiredCount": "3",
            "asgMinCapacity": "3",
            "asgDesiredCapacity": "3",
            "asgMaxCapacity": "6",
            "ec2ServiceHealthCheckGracePeriodSeconds": "120",
        }
    )
    template = Template.from_stack(stacks["ecs"])

    template.has_resource_properties("AWS::ECS::Cluster", {"ClusterName": "orders-cluster"})
    template.has_resource_properties(
        "AWS::ECS::Service",
        {"DesiredCount": 3, "HealthCheckGracePeriodSeconds": 120},
    )
    template.has_resource_properties(
        "AWS::AutoScaling::AutoScalingGroup",
        {"MinSize": "3", "MaxSize": "6", "DesiredCapacity": "3"},
    )
    template.has_resource_properties(
        "AWS::ECS::TaskDefinition",
        {"ContainerDefinitions": [Match.object_like({"MemoryReservation": 1024})]},
    )
    assert ":1.2.1" in json.dumps(template.to_json())


def test_jdbc_url():
    assert jdbc_url("db.local", "5432", "ordersdb") == "jdbc:postgresql://db.local:5432/ordersdb"


def test_outputs(template):
    for output_name in ["ClusterName", "ServiceName"]:
        template.has_output(output_name, {})


def test_ecr_repository(ecr_template):
    ecr_template.resource_count_is("AWS::ECR::Repository", 1)
    ecr_template.has_resource(
        "AWS::ECR::Repository",
        {
            "Properties": Match.object_like(
                {"RepositoryName": "orders-app-ecsec2", "EmptyOnDelete": True}
            ),
            "DeletionPolicy": "Delete",
        },
    )
    ecr_template.has_output("EcrRepositoryUri", {})


def test_ecr_repository_name_follows_config(build_stacks):
    stacks = build_stacks({"computeMode": "ecs", "ecrRepositoryName": "orders-repo"})
    template = Template.from_stack(stacks["ecr_repository"])

    template.has_resource_properties(
        "AWS::ECR::Repository", {"RepositoryName": "orders-repo"}
    )
