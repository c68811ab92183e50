"""CDK stack for the public HTTP API in front of the internal ALB."""

from typing import List

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_apigatewayv2 as apigwv2,
    aws_apigatewayv2_authorizers as apigwv2_authorizers,
    aws_apigatewayv2_integrations as apigwv2_integrations,
    aws_ec2 as ec2,
    aws_elasticloadbalancingv2 as elbv2,
    aws_wafv2 as wafv2,
    CfnOutput,
)

from stacks.config import OrdersAppConfig


def _visibility(metric_name: str) -> wafv2.CfnWebACL.VisibilityConfigProperty:
    return wafv2.CfnWebACL.VisibilityConfigProperty(
        cloud_watch_metrics_enabled=True,
        metric_name=metric_name,
        sampled_requests_enabled=True,
    )


class ApiStack(cdk.Stack):
    """HTTP API with a Cognito JWT authorizer, VPC link and optional WAF."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        vpc: ec2.IVpc,
        app_subnets: List[ec2.ISubnet],
        vpc_link_security_group: ec2.ISecurityGroup,
        alb_listener: elbv2.IApplicationListener,
        issuer_uri: str,
        audience: str,
        config: OrdersAppConfig,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        vpc_link = apigwv2.VpcLink(
            self,
            "OrdersVpcLink",
            vpc=vpc,
            subnets=ec2.SubnetSelection(subnets=app_subnets),
            security_groups=[vpc_link_security_group],
        )

        alb_integration = apigwv2_integrations.HttpAlbIntegration(
            "AlbProxyIntegration",
            alb_listener,
            vpc_link=vpc_link,
        )

        jwt_authorizer = apigwv2_authorizers.HttpJwtAuthorizer(
            "OrdersJwtAuthorizer",
            issuer_uri,
            jwt_audience=[audience],
        )

        self.http_api = apigwv2.HttpApi(
            self,
            "OrdersHttpApi",
            api_name="orders-app-http-api",
        )

        # Every path is proxied and requires a token
        self.http_api.add_routes(
            path="/{proxy+}",
            methods=[apigwv2.HttpMethod.ANY],
            integration=alb_integration,
            authorizer=jwt_authorizer,
        )

        self.web_acl = None
        if config.enable_waf:
            self.web_acl = self._add_web_acl(config.waf_rate_limit)

        CfnOutput(
            self,
            "ApiEndpoint",
            value=self.http_api.api_endpoint,
            description="Invoke URL of the orders HTTP API",
        )

    def _add_web_acl(self, rate_limit: int) -> wafv2.CfnWebACL:
        """Attach a regional web ACL to the API's $default stage."""
        web_acl = wafv2.CfnWebACL(
            self,
            "OrdersWebAcl",
            scope="REGIONAL",
            default_action=wafv2.CfnWebACL.DefaultActionProperty(allow={}),
            visibility_config=_visibility("orders-webacl"),
            rules=[
                wafv2.CfnWebACL.RuleProperty(
                    name="AWSManagedCommon",
                    priority=1,
                    override_action=wafv2.CfnWebACL.OverrideActionProperty(none={}),
                    statement=wafv2.CfnWebACL.StatementProperty(
                        managed_rule_group_statement=wafv2.CfnWebACL.ManagedRuleGroupStatementProperty(
                            vendor_name="AWS",
                            name="AWSManagedRulesCommonRuleSet",
                        )
                    ),
                    visibility_config=_visibility("aws-common"),
                ),
                # Requests per 5 minutes per source IP
                wafv2.CfnWebACL.RuleProperty(
                    name="RateLimit",
                    priority=2,
                    action=wafv2.CfnWebACL.RuleActionProperty(block={}),
                    statement=wafv2.CfnWebACL.StatementProperty(
                        rate_based_statement=wafv2.CfnWebACL.RateBasedStatementProperty(
                            limit=rate_limit,
                            aggregate_key_type="IP",
                        )
                    ),
                    visibility_config=_visibility("rate-limit"),
                ),
            ],
        )

        stage_arn = (
            f"arn:aws:apigateway:{self.region}::/apis/"
            f"{self.http_api.api_id}/stages/$default"
        )

        wafv2.CfnWebACLAssociation(
            self,
            "WebAclAssoc",
            resource_arn=stage_arn,
            web_acl_arn=web_acl.attr_arn,
        )

        return web_acl
