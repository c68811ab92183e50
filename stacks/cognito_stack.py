"""CDK stack for the Cognito user pool that issues API tokens."""

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_cognito as cognito,
    CfnOutput,
)


class CognitoStack(cdk.Stack):
    """User pool and public app client used by the JWT authorizer."""

    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        # Users are created by the account owner
        self.user_pool = cognito.UserPool(
            self,
            "OrdersUserPool",
            user_pool_name="orders-app-users",
            self_sign_up_enabled=False,
            sign_in_aliases=cognito.SignInAliases(email=True),
        )

        self.user_pool_client = self.user_pool.add_client(
            "OrdersApiClient",
            generate_secret=False,
            auth_flows=cognito.AuthFlow(
                user_password=True,
                user_srp=True,
            ),
        )

        self.issuer_uri = (
            f"https://cognito-idp.{self.region}.amazonaws.com/"
            f"{self.user_pool.user_pool_id}"
        )
        self.audience = self.user_pool_client.user_pool_client_id

        CfnOutput(
            self,
            "UserPoolId",
            value=self.user_pool.user_pool_id,
            description="ID of the orders app user pool",
        )

        CfnOutput(
            self,
            "UserPoolClientId",
            value=self.audience,
            description="App client ID (JWT audience)",
        )

        CfnOutput(
            self,
            "IssuerUri",
            value=self.issuer_uri,
            description="JWT issuer for tokens from the user pool",
        )
