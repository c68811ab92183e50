"""CDK stack for orders app alarms, log groups and dashboard."""

from typing import Optional

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_cloudwatch as cloudwatch,
    aws_cloudwatch_actions as cw_actions,
    aws_elasticloadbalancingv2 as elbv2,
    aws_logs as logs,
    aws_rds as rds,
    aws_sns as sns,
    aws_sns_subscriptions as subscriptions,
    Duration,
    RemovalPolicy,
    CfnOutput,
)

# Logging configuration
LOG_RETENTION_DAYS = logs.RetentionDays.ONE_WEEK

# Alarm thresholds
LATENCY_P95_THRESHOLD_SECONDS = 1.0
TARGET_5XX_THRESHOLD = 1
RDS_FREE_STORAGE_THRESHOLD_BYTES = 5 * 1024 * 1024 * 1024

ALB_PERIOD = Duration.minutes(1)
RDS_PERIOD = Duration.minutes(5)

DASHBOARD_WIDTH = 24


class MonitoringStack(cdk.Stack):
    """High-signal alarms on the ALB target group and RDS, routed to SNS."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        target_group: elbv2.IApplicationTargetGroup,
        db: rds.IDatabaseInstance,
        alarm_email: Optional[str] = None,
        **kwargs,
    ) -> None:
        """Initialise the monitoring stack.

        Args:
            scope: The scope in which this stack is defined.
            construct_id: The scoped construct ID.
            target_group: Target group whose metrics are watched.
            db: Database instance whose metrics are watched.
            alarm_email: If given, subscribed to the alarms topic.
            **kwargs: Additional stack properties.
        """
        super().__init__(scope, construct_id, **kwargs)

        self.app_log_group = logs.LogGroup(
            self,
            "OrdersAppLogGroup",
            log_group_name="/orders-app/app",
            retention=LOG_RETENTION_DAYS,
            removal_policy=RemovalPolicy.RETAIN,
        )

        self.system_log_group = logs.LogGroup(
            self,
            "OrdersSystemLogGroup",
            log_group_name="/orders-app/system",
            retention=LOG_RETENTION_DAYS,
            removal_policy=RemovalPolicy.RETAIN,
        )

        self.alarms_topic = sns.Topic(
            self,
            "AlarmsTopic",
            topic_name="orders-app-alarms",
            display_name="Orders App Alarms",
        )

        if alarm_email:
            self.alarms_topic.add_subscription(
                subscriptions.EmailSubscription(alarm_email)
            )

        notify = cw_actions.SnsAction(self.alarms_topic)

        unhealthy_hosts = target_group.metrics.unhealthy_host_count(
            period=ALB_PERIOD, statistic="Maximum"
        )
        healthy_hosts = target_group.metrics.healthy_host_count(
            period=ALB_PERIOD, statistic="Minimum"
        )
        target_5xx = target_group.metrics.http_code_target(
            elbv2.HttpCodeTarget.TARGET_5XX_COUNT, period=ALB_PERIOD, statistic="Sum"
        )
        requests = target_group.metrics.request_count(period=ALB_PERIOD, statistic="Sum")
        # TargetResponseTime is reported in seconds
        latency_p95 = target_group.metrics.target_response_time(
            period=ALB_PERIOD, statistic="p95"
        )
        free_storage = db.metric_free_storage_space(period=RDS_PERIOD, statistic="Minimum")
        cpu = db.metric_cpu_utilization(period=RDS_PERIOD, statistic="Average")

        self.alarms = [
            cloudwatch.Alarm(
                self,
                "UnhealthyHostsAlarm",
                alarm_name="orders-app-tg-unhealthy-hosts",
                metric=unhealthy_hosts,
                threshold=0,
                evaluation_periods=2,
                datapoints_to_alarm=2,
                comparison_operator=cloudwatch.ComparisonOperator.GREATER_THAN_THRESHOLD,
                treat_missing_data=cloudwatch.TreatMissingData.NOT_BREACHING,
            ),
            cloudwatch.Alarm(
                self,
                "Target5xxAlarm",
                alarm_name="orders-app-tg-5xx",
                metric=target_5xx,
                threshold=TARGET_5XX_THRESHOLD,
                evaluation_periods=2,
                datapoints_to_alarm=2,
                comparison_operator=cloudwatch.ComparisonOperator.GREATER_THAN_OR_EQUAL_TO_THRESHOLD,
                treat_missing_data=cloudwatch.TreatMissingData.NOT_BREACHING,
            ),
            cloudwatch.Alarm(
                self,
                "P95LatencyAlarm",
                alarm_name="orders-app-tg-latency-p95-high",
                metric=latency_p95,
                threshold=LATENCY_P95_THRESHOLD_SECONDS,
                evaluation_periods=3,
                datapoints_to_alarm=3,
                comparison_operator=cloudwatch.ComparisonOperator.GREATER_THAN_OR_EQUAL_TO_THRESHOLD,
                treat_missing_data=cloudwatch.TreatMissingData.NOT_BREACHING,
            ),
            cloudwatch.Alarm(
                self,
                "RdsFreeStorageAlarm",
                alarm_name="orders-app-rds-free-storage-low",
                metric=free_storage,
                threshold=RDS_FREE_STORAGE_THRESHOLD_BYTES,
                evaluation_periods=2,
                datapoints_to_alarm=2,
                comparison_operator=cloudwatch.ComparisonOperator.LESS_THAN_THRESHOLD,
                treat_missing_data=cloudwatch.TreatMissingData.NOT_BREACHING,
            ),
        ]

        for alarm in self.alarms:
            alarm.add_alarm_action(notify)

        self.dashboard = cloudwatch.Dashboard(
            self,
            "OrdersAppDashboard",
            dashboard_name="orders-app",
        )

        self.dashboard.add_widgets(
            cloudwatch.TextWidget(
                markdown=(
                    "# Orders App\n"
                    f"**Target Group:** {target_group.target_group_name}\n\n"
                    f"**RDS:** {db.instance_identifier}"
                ),
                width=DASHBOARD_WIDTH,
                height=4,
            )
        )

        self.dashboard.add_widgets(
            cloudwatch.GraphWidget(
                title="ALB Target Group: Healthy/Unhealthy Hosts",
                left=[healthy_hosts, unhealthy_hosts],
                width=DASHBOARD_WIDTH,
                height=6,
            )
        )

        self.dashboard.add_widgets(
            cloudwatch.GraphWidget(
                title="ALB Target Group: Requests & 5xx",
                left=[requests, target_5xx],
                width=DASHBOARD_WIDTH,
                height=6,
            )
        )

        self.dashboard.add_widgets(
            cloudwatch.GraphWidget(
                title="ALB Target Group: TargetResponseTime p95 (seconds)",
                left=[latency_p95],
                width=DASHBOARD_WIDTH,
                height=6,
            )
        )

        self.dashboard.add_widgets(
            cloudwatch.GraphWidget(
                title="RDS: CPU & Free Storage",
                left=[cpu],
                right=[free_storage],
                width=DASHBOARD_WIDTH,
                height=6,
            )
        )

        CfnOutput(
            self,
            "AlarmsTopicArn",
            value=self.alarms_topic.topic_arn,
            description="ARN of the alarms SNS topic",
        )

        CfnOutput(
            self,
            "DashboardName",
            value=self.dashboard.dashboard_name,
            description="Name of the CloudWatch dashboard",
        )

        CfnOutput(
            self,
            "AppLogGroupName",
            value=self.app_log_group.log_group_name,
            description="Application log group",
        )

        CfnOutput(
            self,
            "SystemLogGroupName",
            value=self.system_log_group.log_group_name,
            description="System log group",
        )
