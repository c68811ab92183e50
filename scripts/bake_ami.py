#!/usr/bin/env python3
"""Upload an app jar and bake it into an AMI with the Image Builder pipeline.

Usage:
    python scripts/bake_ami.py <jar path or http(s) URL> [--stack OrdersApp-AmiBuilder]

Prints the ``cdk deploy`` command that rolls the new AMI out to the compute stack.
"""

import argparse
import sys
import time
from typing import Any, Dict, Optional

import boto3
import requests

# Colors for output
GREEN = "\033[0;32m"
BLUE = "\033[0;34m"
YELLOW = "\033[1;33m"
NC = "\033[0m"  # No Color

DEFAULT_STACK_NAME = "OrdersApp-AmiBuilder"
POLL_INTERVAL_SECONDS = 30
TIMEOUT_SECONDS = 90 * 60
DOWNLOAD_TIMEOUT_SECONDS = 60

TERMINAL_FAILURE_STATES = {"FAILED", "CANCELLED", "DEPRECATED", "DELETED"}


class BakeError(Exception):
    """Raised when the bake cannot start or the build does not succeed."""


def get_stack_outputs(cloudformation, stack_name: str) -> Dict[str, str]:
    """Return the stack outputs as a key/value dict."""
    response = cloudformation.describe_stacks(StackName=stack_name)
    outputs = response["Stacks"][0].get("Outputs", [])
    return {output["OutputKey"]: output["OutputValue"] for output in outputs}


def require_output(outputs: Dict[str, str], key: str, stack_name: str) -> str:
    value = outputs.get(key)
    if not value:
        raise BakeError(f"Stack {stack_name} has no output {key}; is it deployed?")
    return value


def read_jar(source: str) -> bytes:
    """Read the jar from a local path or download it from an HTTP(S) URL."""
    if source.startswith(("http://", "https://")):
        response = requests.get(source, timeout=DOWNLOAD_TIMEOUT_SECONDS)
        response.raise_for_status()
        return response.content

    with open(source, "rb") as f:
        return f.read()


def upload_jar(s3, bucket: str, jar_key: str, body: bytes) -> None:
    s3.put_object(Bucket=bucket, Key=jar_key, Body=body)


def start_bake(imagebuilder, pipeline_arn: str) -> str:
    """Start a pipeline execution and return the image build version ARN."""
    response = imagebuilder.start_image_pipeline_execution(
        imagePipelineArn=pipeline_arn
    )
    return response["imageBuildVersionArn"]


def wait_for_image(
    imagebuilder,
    image_arn: str,
    poll_interval: float = POLL_INTERVAL_SECONDS,
    timeout: float = TIMEOUT_SECONDS,
    sleep=time.sleep,
    clock=time.monotonic,
) -> Dict[str, Any]:
    """Poll the image until it is AVAILABLE.

    Raises:
        BakeError: The build ended in a failure state or timed out.
    """
    deadline = clock() + timeout
    while True:
        image = imagebuilder.get_image(imageBuildVersionArn=image_arn)["image"]
        state = image["state"]["status"]
        print(f"  Image state: {state}")

        if state == "AVAILABLE":
            return image
        if state in TERMINAL_FAILURE_STATES:
            reason = image["state"].get("reason", "no reason given")
            raise BakeError(f"Image build {state}: {reason}")
        if clock() >= deadline:
            raise BakeError(f"Timed out after {timeout:.0f}s waiting for {image_arn}")

        sleep(poll_interval)


def read_ami_id(ssm, parameter_name: str) -> str:
    response = ssm.get_parameter(Name=parameter_name)
    return response["Parameter"]["Value"]


def bake(
    source: str,
    stack_name: str = DEFAULT_STACK_NAME,
    session: Optional[boto3.session.Session] = None,
    poll_interval: float = POLL_INTERVAL_SECONDS,
    timeout: float = TIMEOUT_SECONDS,
) -> str:
    """Run the full bake and return the new AMI id."""
    session = session or boto3.session.Session()

    outputs = get_stack_outputs(session.client("cloudformation"), stack_name)
    bucket = require_output(outputs, "ArtifactsBucketName", stack_name)
    jar_key = require_output(outputs, "JarKey", stack_name)
    parameter_name = require_output(outputs, "AmiSsmParameterName", stack_name)
    pipeline_arn = require_output(outputs, "ImagePipelineArn", stack_name)

    print(f"{BLUE}Uploading jar to s3://{bucket}/{jar_key}{NC}")
    upload_jar(session.client("s3"), bucket, jar_key, read_jar(source))

    imagebuilder = session.client("imagebuilder")
    image_arn = start_bake(imagebuilder, pipeline_arn)
    print(f"{BLUE}Started image build {image_arn}{NC}")

    wait_for_image(imagebuilder, image_arn, poll_interval=poll_interval, timeout=timeout)

    return read_ami_id(session.client("ssm"), parameter_name)


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("jar", help="Path or http(s) URL of the app jar")
    parser.add_argument(
        "--stack",
        default=DEFAULT_STACK_NAME,
        help=f"AMI builder stack name (default: {DEFAULT_STACK_NAME})",
    )
    parser.add_argument("--region", help="AWS region (default: from AWS config)")
    args = parser.parse_args(argv)

    session = boto3.session.Session(region_name=args.region)

    try:
        ami_id = bake(args.jar, stack_name=args.stack, session=session)
    except (BakeError, OSError, requests.RequestException) as e:
        print(f"{YELLOW}[ERROR] {e}{NC}")
        sys.exit(1)

    print(f"\n{GREEN}[OK] Baked AMI: {ami_id}{NC}")
    print(f"\n{BLUE}Roll it out with:{NC}")
    print(f"  cdk deploy '*-Compute' -c amiId={ami_id} -c appJarUrl=<jar url>")
    return ami_id


if __name__ == "__main__":
    main()
