"""CDK stack for the EC2 Image Builder pipeline that bakes the app AMI."""

import re

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_ec2 as ec2,
    aws_iam as iam,
    aws_imagebuilder as imagebuilder,
    aws_s3 as s3,
    RemovalPolicy,
    CfnOutput,
)

# Latest AL2023 resolved at deploy time; x86_64 matches the t3 instance family
PARENT_IMAGE = (
    "{{resolve:ssm:/aws/service/ami-amazon-linux-latest/al2023-ami-kernel-6.1-x86_64}}"
)
BUILD_INSTANCE_TYPE = "t3.micro"
ROOT_VOLUME_SIZE_GB = 16
COMPONENT_VERSION = "1.0.0"
AMI_PARAMETER_PREFIX = "/orders-app/ami/"


def safe_id_from_jar_key(jar_key: str) -> str:
    """Make a jar key usable in Image Builder resource names.

    >>> safe_id_from_jar_key("releases/1.2.1/app.jar")
    'releases-1-2-1-app-jar'
    """
    return re.sub(r"[^a-zA-Z0-9_-]", "-", jar_key)


def ami_parameter_name(jar_key: str) -> str:
    """SSM parameter that receives the AMI id baked for ``jar_key``."""
    return f"{AMI_PARAMETER_PREFIX}{jar_key}"


def render_component_yaml(bucket_name: str, jar_key: str) -> str:
    """Render the Image Builder component that installs the app.

    The build phase installs Java, creates the service user, copies the jar
    from S3 and installs (but does not start) the systemd unit.
    """
    unit = [
        "[Unit]",
        "Description=Orders App (Spring Boot)",
        "After=network-online.target",
        "Wants=network-online.target",
        "",
        "[Service]",
        "Type=simple",
        "User=ordersapp",
        "WorkingDirectory=/opt/orders-app",
        "EnvironmentFile=/etc/orders-app.env",
        "ExecStart=/usr/bin/java -jar /opt/orders-app/app.jar",
        "Restart=always",
        "RestartSec=5",
        "SuccessExitStatus=143",
        "",
        "[Install]",
        "WantedBy=multi-user.target",
    ]
    lines = [
        "name: OrdersAppBake",
        "description: Bake Orders Spring Boot app into AMI",
        "schemaVersion: 1.0",
        "phases:",
        "  - name: build",
        "    steps:",
        "      - name: InstallPackages",
        "        action: ExecuteBash",
        "        inputs:",
        "          commands:",
        "            - dnf -y update",
        "            - dnf -y install java-21-amazon-corretto awscli",
        "      - name: CreateUserDirs",
        "        action: ExecuteBash",
        "        inputs:",
        "          commands:",
        "            - id -u ordersapp &>/dev/null || useradd --system --create-home --shell /sbin/nologin ordersapp",
        "            - mkdir -p /opt/orders-app",
        "            - chown -R ordersapp:ordersapp /opt/orders-app",
        "      - name: DownloadJarFromS3",
        "        action: ExecuteBash",
        "        inputs:",
        "          commands:",
        f"            - aws s3 cp s3://{bucket_name}/{jar_key} /opt/orders-app/app.jar",
        "            - chown ordersapp:ordersapp /opt/orders-app/app.jar",
        "            - chmod 0644 /opt/orders-app/app.jar",
        "      - name: InstallSystemdUnit",
        "        action: ExecuteBash",
        "        inputs:",
        "          commands:",
        "            - |",
        "              cat >/etc/systemd/system/orders-app.service <<'EOF'",
        *[f"              {line}" if line else "" for line in unit],
        "              EOF",
        "            - systemctl daemon-reload",
        "            - systemctl enable orders-app.service",
    ]
    return "\n".join(lines)


class AmiBuilderStack(cdk.Stack):
    """Artifacts bucket plus an Image Builder pipeline keyed by the jar key."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        vpc: ec2.IVpc,
        build_subnet: ec2.ISubnet,
        jar_key: str,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        jar_key_id = safe_id_from_jar_key(jar_key)
        self.ami_parameter_name = ami_parameter_name(jar_key)

        self.bucket = s3.Bucket(
            self,
            "OrdersArtifacts",
            bucket_name=f"{self.stack_name.lower()}-artifacts-{cdk.Aws.ACCOUNT_ID}-{cdk.Aws.REGION}",
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            encryption=s3.BucketEncryption.S3_MANAGED,
            versioned=True,
            removal_policy=RemovalPolicy.RETAIN,
            enforce_ssl=True,
        )

        # Role for the ephemeral build instance
        build_role = iam.Role(
            self,
            "ImageBuilderInstanceRole",
            assumed_by=iam.ServicePrincipal("ec2.amazonaws.com"),
        )
        build_role.add_managed_policy(
            iam.ManagedPolicy.from_aws_managed_policy_name("AmazonSSMManagedInstanceCore")
        )
        build_role.add_managed_policy(
            iam.ManagedPolicy.from_aws_managed_policy_name(
                "EC2InstanceProfileForImageBuilder"
            )
        )

        parameter_arn = self.format_arn(
            service="ssm",
            resource="parameter",
            resource_name=self.ami_parameter_name.lstrip("/"),
        )

        build_role.add_to_policy(
            iam.PolicyStatement(
                actions=["ssm:PutParameter"],
                resources=[parameter_arn],
            )
        )

        build_role.add_to_policy(
            iam.PolicyStatement(
                actions=["ec2:DescribeImages"],
                resources=["*"],
            )
        )

        self.bucket.grant_read(build_role, jar_key)

        instance_profile = iam.CfnInstanceProfile(
            self,
            "ImageBuilderInstanceProfile",
            roles=[build_role.role_name],
        )

        build_security_group = ec2.SecurityGroup(
            self,
            "ImageBuilderBuildSg",
            vpc=vpc,
            allow_all_outbound=True,
            description="SG for EC2 Image Builder build instance",
        )

        component = imagebuilder.CfnComponent(
            self,
            "OrdersAppComponent",
            name=f"orders-app-bake-{jar_key_id}",
            platform="Linux",
            version=COMPONENT_VERSION,
            data=render_component_yaml(self.bucket.bucket_name, jar_key),
        )

        recipe = imagebuilder.CfnImageRecipe(
            self,
            "OrdersAppRecipe",
            name=f"orders-app-recipe-{jar_key_id}",
            version=COMPONENT_VERSION,
            parent_image=PARENT_IMAGE,
            components=[
                imagebuilder.CfnImageRecipe.ComponentConfigurationProperty(
                    component_arn=component.attr_arn
                )
            ],
            block_device_mappings=[
                imagebuilder.CfnImageRecipe.InstanceBlockDeviceMappingProperty(
                    device_name="/dev/xvda",
                    ebs=imagebuilder.CfnImageRecipe.EbsInstanceBlockDeviceSpecificationProperty(
                        volume_size=ROOT_VOLUME_SIZE_GB,
                        volume_type="gp3",
                        encrypted=True,
                        delete_on_termination=True,
                    ),
                )
            ],
        )

        infrastructure = imagebuilder.CfnInfrastructureConfiguration(
            self,
            "OrdersAppInfra",
            name=f"orders-app-infra-{jar_key_id}",
            instance_profile_name=instance_profile.ref,
            instance_types=[BUILD_INSTANCE_TYPE],
            subnet_id=build_subnet.subnet_id,
            security_group_ids=[build_security_group.security_group_id],
            terminate_instance_on_failure=True,
        )

        distribution = imagebuilder.CfnDistributionConfiguration(
            self,
            "OrdersAppDist",
            name=f"orders-app-dist-{jar_key_id}",
            distributions=[
                imagebuilder.CfnDistributionConfiguration.DistributionProperty(
                    region=self.region,
                    ami_distribution_configuration={
                        "Name": "orders-app-ami-{{ imagebuilder:buildDate }}",
                        "Description": "Orders app baked AMI (Java + jar + systemd)",
                        "AmiTags": {
                            "App": "orders-app",
                            "ManagedBy": "imagebuilder",
                        },
                    },
                    ssm_parameter_configurations=[
                        imagebuilder.CfnDistributionConfiguration.SsmParameterConfigurationProperty(
                            parameter_name=self.ami_parameter_name,
                            data_type="aws:ec2:image",
                        )
                    ],
                )
            ],
        )

        pipeline = imagebuilder.CfnImagePipeline(
            self,
            "OrdersAppPipeline",
            name=f"orders-app-pipeline-{jar_key_id}",
            image_recipe_arn=recipe.attr_arn,
            infrastructure_configuration_arn=infrastructure.attr_arn,
            distribution_configuration_arn=distribution.attr_arn,
            status="ENABLED",
        )

        self.pipeline_arn = pipeline.attr_arn

        CfnOutput(
            self,
            "ArtifactsBucketName",
            value=self.bucket.bucket_name,
            description="Bucket holding app jars for baking",
        )

        CfnOutput(
            self,
            "JarKey",
            value=jar_key,
            description="S3 key of the jar baked into the AMI",
        )

        CfnOutput(
            self,
            "AmiSsmParameterName",
            value=self.ami_parameter_name,
            description="SSM parameter receiving the baked AMI id",
        )

        CfnOutput(
            self,
            "ImagePipelineArn",
            value=self.pipeline_arn,
            description="ARN of the Image Builder pipeline",
        )
