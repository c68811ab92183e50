"""CDK stack running the orders app jar on an EC2 Auto Scaling group."""

from typing import List

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_autoscaling as autoscaling,
    aws_ec2 as ec2,
    aws_elasticloadbalancingv2 as elbv2,
    aws_iam as iam,
    Duration,
    CfnOutput,
)

from stacks.config import OrdersAppConfig
from stacks.database_stack import DatabaseStack

ELB_HEALTH_CHECK_GRACE_SECONDS = 300

APP_DIR = "/opt/orders-app"
APP_USER = "ordersapp"
ENV_FILE = "/etc/orders-app.env"

SYSTEMD_UNIT = [
    "[Unit]",
    "Description=Orders App (Spring Boot)",
    "After=network-online.target",
    "Wants=network-online.target",
    "",
    "[Service]",
    "Type=simple",
    f"User={APP_USER}",
    f"WorkingDirectory={APP_DIR}",
    f"EnvironmentFile={ENV_FILE}",
    f"ExecStart=/usr/bin/java -jar {APP_DIR}/app.jar",
    "Restart=always",
    "RestartSec=5",
    "SuccessExitStatus=143",
    "",
    "[Install]",
    "WantedBy=multi-user.target",
]


def render_user_data(
    config: OrdersAppConfig,
    db_host: str,
    db_port: str,
    secret_arn: str,
    issuer_uri: str,
    audience: str,
) -> List[str]:
    """Render the boot script that installs and starts the app.

    Values may be CDK tokens; they are resolved when the template is synthesized.
    Shell variables are expanded on the instance at boot.

    Returns:
        The script as a list of shell lines (without the shebang).
    """
    return [
        "set -euo pipefail",
        "",
        "dnf -y update",
        "dnf -y install java-21-amazon-corretto jq awscli",
        "",
        f"id -u {APP_USER} &>/dev/null || useradd --system --create-home --shell /sbin/nologin {APP_USER}",
        f"mkdir -p {APP_DIR}",
        f"chown -R {APP_USER}:{APP_USER} {APP_DIR}",
        "",
        f'curl -fL "{config.app_jar_url}" -o {APP_DIR}/app.jar',
        f"chown {APP_USER}:{APP_USER} {APP_DIR}/app.jar",
        f"chmod 0644 {APP_DIR}/app.jar",
        "",
        f'DB_HOST="{db_host}"',
        f'DB_PORT="{db_port}"',
        f'DB_NAME="{config.db_name}"',
        'JDBC_URL="jdbc:postgresql://${DB_HOST}:${DB_PORT}/${DB_NAME}"',
        "",
        f'SECRET_ARN="{secret_arn}"',
        'SECRET_JSON="$(aws secretsmanager get-secret-value --secret-id "$SECRET_ARN" --query SecretString --output text)"',
        'DB_USER="$(echo "$SECRET_JSON" | jq -r .username)"',
        'DB_PASS="$(echo "$SECRET_JSON" | jq -r .password)"',
        "",
        f"cat >{ENV_FILE} <<EOF",
        "SPRING_DATASOURCE_URL=${JDBC_URL}",
        "SPRING_DATASOURCE_USERNAME=${DB_USER}",
        "SPRING_DATASOURCE_PASSWORD=${DB_PASS}",
        f"SPRING_SECURITY_OAUTH2_RESOURCESERVER_JWT_ISSUER_URI={issuer_uri}",
        f"SPRING_SECURITY_OAUTH2_RESOURCESERVER_JWT_AUDIENCES={audience}",
        f"SERVER_PORT={config.app_port}",
        f"APP_PORT={config.app_port}",
        "EOF",
        f"chmod 0600 {ENV_FILE}",
        "",
        "cat >/etc/systemd/system/orders-app.service <<'EOF'",
        *SYSTEMD_UNIT,
        "EOF",
        "",
        "systemctl daemon-reload",
        "systemctl enable --now orders-app.service",
    ]


class ComputeStack(cdk.Stack):
    """Auto Scaling group of app instances registered with the ALB target group."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        vpc: ec2.IVpc,
        app_subnets: List[ec2.ISubnet],
        app_security_group: ec2.ISecurityGroup,
        target_group: elbv2.IApplicationTargetGroup,
        database: DatabaseStack,
        issuer_uri: str,
        audience: str,
        config: OrdersAppConfig,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        role = iam.Role(
            self,
            "OrdersAppEc2Role",
            role_name=f"orders-app-ec2-ssm-role-{self.stack_name}",
            assumed_by=iam.ServicePrincipal("ec2.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "AmazonSSMManagedInstanceCore"
                )
            ],
        )

        # Instances read DB credentials at boot
        database.secret.grant_read(role)

        role.add_to_policy(
            iam.PolicyStatement(
                actions=["rds:DescribeDBInstances"],
                resources=["*"],
            )
        )

        user_data = ec2.UserData.for_linux()
        user_data.add_commands(
            *render_user_data(
                config,
                db_host=database.db.db_instance_endpoint_address,
                db_port=database.db.db_instance_endpoint_port,
                secret_arn=database.secret.secret_arn,
                issuer_uri=issuer_uri,
                audience=audience,
            )
        )

        machine_image = ec2.MachineImage.generic_linux({self.region: config.ami_id})

        self.asg = autoscaling.AutoScalingGroup(
            self,
            "OrdersAsg",
            vpc=vpc,
            vpc_subnets=ec2.SubnetSelection(subnets=app_subnets),
            min_capacity=config.min_size,
            max_capacity=config.max_size,
            desired_capacity=config.desired_capacity,
            instance_type=ec2.InstanceType(config.instance_type),
            machine_image=machine_image,
            security_group=app_security_group,
            role=role,
            user_data=user_data,
            health_check=autoscaling.HealthCheck.elb(
                grace=Duration.seconds(ELB_HEALTH_CHECK_GRACE_SECONDS)
            ),
        )

        target_group.add_target(self.asg)

        CfnOutput(
            self,
            "AutoScalingGroupName",
            value=self.asg.auto_scaling_group_name,
            description="Name of the orders app Auto Scaling group",
        )
