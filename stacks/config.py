"""Deployment configuration for the orders app, read from CDK context."""

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Tuple

import aws_cdk as cdk

logger = logging.getLogger(__name__)

ALLOWED_DB_ENGINE_VERSIONS = ("16.8", "16.9", "17.6", "17.7")
COMPUTE_MODES = ("ec2", "ecs")

# RDS gp3 minimum allocation
MIN_DB_STORAGE_GB = 20
MAX_DB_BACKUP_RETENTION_DAYS = 35

# WAFv2 rate-based rule bounds (requests per 5 minutes)
MIN_WAF_RATE_LIMIT = 100
MAX_WAF_RATE_LIMIT = 2_000_000_000

# CloudFormation stack names; the prefix is joined to role suffixes with "-"
STACK_PREFIX_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9-]*$")
ECR_REPOSITORY_NAME_PATTERN = re.compile(
    r"^(?:[a-z0-9]+(?:[._-][a-z0-9]+)*/)*[a-z0-9]+(?:[._-][a-z0-9]+)*$"
)
MIN_ECR_REPOSITORY_NAME_LENGTH = 2
MAX_ECR_REPOSITORY_NAME_LENGTH = 256


class ConfigError(ValueError):
    """Base class for configuration errors; ``key`` names the context value."""

    def __init__(self, key: str, message: str) -> None:
        super().__init__(message)
        self.key = key


class MissingParameter(ConfigError):
    def __init__(self, key: str) -> None:
        super().__init__(
            key,
            f"Missing required context: {key}. Provide it via: cdk deploy -c {key}=...",
        )


class InvalidType(ConfigError):
    def __init__(self, key: str, expected: str, value: Any) -> None:
        super().__init__(key, f"Context {key} must be a {expected} (got {value!r})")


class InvalidEnumValue(ConfigError):
    def __init__(self, key: str, value: Any, allowed: Tuple[str, ...]) -> None:
        super().__init__(
            key, f'Invalid {key}: "{value}". Allowed values: {", ".join(allowed)}'
        )
        self.allowed = allowed


class InvalidValue(ConfigError):
    def __init__(self, key: str, value: Any, reason: str) -> None:
        super().__init__(key, f"Invalid {key}: {value!r} ({reason})")


@dataclass(frozen=True)
class OrdersAppConfig:
    """Validated deployment parameters shared by every stack."""

    compute_mode: str
    stack_prefix: str

    # ec2 mode
    app_jar_url: Optional[str]
    ami_id: Optional[str]
    jar_key: str
    instance_type: str
    desired_capacity: int
    min_size: int
    max_size: int

    app_port: int
    health_check_path: str

    db_name: str
    db_engine_version: str
    db_instance_class: str
    db_allocated_storage_gb: int
    db_backup_retention_days: int
    db_deletion_protection: bool
    db_multi_az: bool

    # ecs mode
    ecr_repository_name: str
    ecs_cluster_name: str
    ecs_instance_type: str
    asg_min_capacity: int
    asg_max_capacity: int
    asg_desired_capacity: int
    image_tag: str
    container_memory_reservation_mb: int
    ec2_service_desired_count: int
    ec2_service_health_check_grace_period_seconds: int

    alarm_email: Optional[str]
    enable_waf: bool
    waf_rate_limit: int

    @property
    def is_ec2(self) -> bool:
        return self.compute_mode == "ec2"

    @property
    def is_ecs(self) -> bool:
        return self.compute_mode == "ecs"


class _ContextReader:
    """Typed accessors over a key lookup function."""

    def __init__(self, lookup: Callable[[str], Any]) -> None:
        self._lookup = lookup

    def _default(self, key: str, default: Any) -> Any:
        logger.debug("Context %s not set, using default %r", key, default)
        return default

    def required_string(self, key: str) -> str:
        value = self._lookup(key)
        if value is None or value == "":
            raise MissingParameter(key)
        if not isinstance(value, str):
            raise InvalidType(key, "string", value)
        return value

    def optional_string(self, key: str, default: Optional[str]) -> Optional[str]:
        value = self._lookup(key)
        if value is None:
            return self._default(key, default)
        if not isinstance(value, str):
            raise InvalidType(key, "string", value)
        return value

    def optional_number(self, key: str, default: float) -> float:
        value = self._lookup(key)
        if value is None:
            return self._default(key, default)
        if isinstance(value, bool):
            raise InvalidType(key, "number", value)
        if isinstance(value, (int, float)):
            number = value
        elif isinstance(value, str):
            try:
                number = int(value)
            except ValueError:
                try:
                    number = float(value)
                except ValueError:
                    raise InvalidType(key, "number", value) from None
        else:
            raise InvalidType(key, "number", value)
        if isinstance(number, float) and not math.isfinite(number):
            raise InvalidType(key, "number", value)
        return number

    def optional_int(self, key: str, default: int) -> int:
        number = self.optional_number(key, default)
        if isinstance(number, float):
            if not number.is_integer():
                raise InvalidType(key, "whole number", number)
            number = int(number)
        return number

    def optional_bool(self, key: str, default: bool) -> bool:
        value = self._lookup(key)
        if value is None:
            return self._default(key, default)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered == "true":
                return True
            if lowered == "false":
                return False
        raise InvalidType(key, "boolean (true/false)", value)

    def optional_enum(self, key: str, default: str, allowed: Tuple[str, ...]) -> str:
        value = self._lookup(key)
        if value is None:
            return self._default(key, default)
        if not isinstance(value, str):
            raise InvalidType(key, "string", value)
        if value not in allowed:
            raise InvalidEnumValue(key, value, allowed)
        return value


def _check_range(key: str, value: int, low: int, high: Optional[int] = None) -> int:
    if value < low or (high is not None and value > high):
        bound = f"between {low} and {high}" if high is not None else f"at least {low}"
        raise InvalidValue(key, value, f"must be {bound}")
    return value


def _check_pattern(key: str, value: str, pattern: re.Pattern, description: str) -> str:
    if not pattern.match(value):
        raise InvalidValue(key, value, f"must be {description}")
    return value


def _check_capacity(keys: Tuple[str, str, str], minimum: int, desired: int, maximum: int) -> None:
    min_key, desired_key, max_key = keys
    _check_range(min_key, minimum, 0)
    if maximum < minimum:
        raise InvalidValue(max_key, maximum, f"must be >= {min_key} ({minimum})")
    if not minimum <= desired <= maximum:
        raise InvalidValue(
            desired_key, desired, f"must be between {min_key} and {max_key}"
        )


def _build_config(reader: _ContextReader) -> OrdersAppConfig:
    compute_mode = reader.optional_enum("computeMode", "ec2", COMPUTE_MODES)
    stack_prefix = _check_pattern(
        "stackPrefix",
        reader.optional_string("stackPrefix", "OrdersApp"),
        STACK_PREFIX_PATTERN,
        "a letter followed by letters, digits or hyphens",
    )

    if compute_mode == "ec2":
        app_jar_url = reader.required_string("appJarUrl")
        ami_id = reader.required_string("amiId")
    else:
        app_jar_url = reader.optional_string("appJarUrl", None)
        ami_id = reader.optional_string("amiId", None)

    jar_key = reader.optional_string("jarKey", "releases/latest/app.jar")
    instance_type = reader.optional_string("instanceType", "t3.micro")
    desired_capacity = reader.optional_int("desiredCapacity", 2)
    min_size = reader.optional_int("minSize", 2)
    max_size = reader.optional_int("maxSize", 2)
    _check_capacity(("minSize", "desiredCapacity", "maxSize"), min_size, desired_capacity, max_size)

    app_port = _check_range("appPort", reader.optional_int("appPort", 8080), 1, 65535)
    health_check_path = reader.optional_string(
        "healthCheckPath", "/actuator/health/readiness"
    )

    db_name = reader.optional_string("dbName", "ordersdb")
    db_engine_version = reader.optional_enum(
        "dbEngineVersion", "16.9", ALLOWED_DB_ENGINE_VERSIONS
    )
    db_instance_class = reader.optional_string("dbInstanceClass", "t4g.micro")
    db_allocated_storage_gb = _check_range(
        "dbAllocatedStorageGb",
        reader.optional_int("dbAllocatedStorageGb", MIN_DB_STORAGE_GB),
        MIN_DB_STORAGE_GB,
    )
    db_backup_retention_days = _check_range(
        "dbBackupRetentionDays",
        reader.optional_int("dbBackupRetentionDays", 7),
        0,
        MAX_DB_BACKUP_RETENTION_DAYS,
    )
    db_deletion_protection = reader.optional_bool("dbDeletionProtection", True)
    db_multi_az = reader.optional_bool("dbMultiAz", True)

    ecr_repository_name = _check_pattern(
        "ecrRepositoryName",
        reader.optional_string("ecrRepositoryName", "orders-app-ecsec2"),
        ECR_REPOSITORY_NAME_PATTERN,
        "lowercase letters and digits separated by . _ - or /",
    )
    if not MIN_ECR_REPOSITORY_NAME_LENGTH <= len(ecr_repository_name) <= MAX_ECR_REPOSITORY_NAME_LENGTH:
        raise InvalidValue(
            "ecrRepositoryName",
            ecr_repository_name,
            f"must be {MIN_ECR_REPOSITORY_NAME_LENGTH} to {MAX_ECR_REPOSITORY_NAME_LENGTH} characters",
        )
    ecs_cluster_name = reader.optional_string("ecsClusterName", "ecsec2-cluster")
    ecs_instance_type = reader.optional_string("ecsInstanceType", "t3.small")
    asg_min_capacity = reader.optional_int("asgMinCapacity", 2)
    asg_max_capacity = reader.optional_int("asgMaxCapacity", 2)
    asg_desired_capacity = reader.optional_int("asgDesiredCapacity", 2)
    _check_capacity(
        ("asgMinCapacity", "asgDesiredCapacity", "asgMaxCapacity"),
        asg_min_capacity,
        asg_desired_capacity,
        asg_max_capacity,
    )
    image_tag = reader.optional_string("imageTag", "latest")
    container_memory_reservation_mb = _check_range(
        "containerMemoryReservationMB",
        reader.optional_int("containerMemoryReservationMB", 512),
        1,
    )
    ec2_service_desired_count = _check_range(
        "ec2ServiceDesiredCount", reader.optional_int("ec2ServiceDesiredCount", 2), 0
    )
    ec2_service_health_check_grace_period_seconds = _check_range(
        "ec2ServiceHealthCheckGracePeriodSeconds",
        reader.optional_int("ec2ServiceHealthCheckGracePeriodSeconds", 300),
        0,
    )

    alarm_email = reader.optional_string("alarmEmail", None)
    if alarm_email is not None and "@" not in alarm_email:
        raise InvalidValue("alarmEmail", alarm_email, "not an e-mail address")
    enable_waf = reader.optional_bool("enableWaf", True)
    waf_rate_limit = _check_range(
        "wafRateLimit",
        reader.optional_int("wafRateLimit", 300),
        MIN_WAF_RATE_LIMIT,
        MAX_WAF_RATE_LIMIT,
    )

    return OrdersAppConfig(
        compute_mode=compute_mode,
        stack_prefix=stack_prefix,
        app_jar_url=app_jar_url,
        ami_id=ami_id,
        jar_key=jar_key,
        instance_type=instance_type,
        desired_capacity=desired_capacity,
        min_size=min_size,
        max_size=max_size,
        app_port=app_port,
        health_check_path=health_check_path,
        db_name=db_name,
        db_engine_version=db_engine_version,
        db_instance_class=db_instance_class,
        db_allocated_storage_gb=db_allocated_storage_gb,
        db_backup_retention_days=db_backup_retention_days,
        db_deletion_protection=db_deletion_protection,
        db_multi_az=db_multi_az,
        ecr_repository_name=ecr_repository_name,
        ecs_cluster_name=ecs_cluster_name,
        ecs_instance_type=ecs_instance_type,
        asg_min_capacity=asg_min_capacity,
        asg_max_capacity=asg_max_capacity,
        asg_desired_capacity=asg_desired_capacity,
        image_tag=image_tag,
        container_memory_reservation_mb=container_memory_reservation_mb,
        ec2_service_desired_count=ec2_service_desired_count,
        ec2_service_health_check_grace_period_seconds=ec2_service_health_check_grace_period_seconds,
        alarm_email=alarm_email,
        enable_waf=enable_waf,
        waf_rate_limit=waf_rate_limit,
    )


def load_config(params: Mapping[str, Any]) -> OrdersAppConfig:
    """Build a validated config from a mapping of context values.

    Args:
        params: Context values keyed by their camelCase names.

    Returns:
        The populated configuration record.

    Raises:
        ConfigError: The first missing or invalid value found.
    """
    return _build_config(_ContextReader(params.get))


def load_config_from_app(app: cdk.App) -> OrdersAppConfig:
    """Build a validated config from the app's CDK context (``-c key=value``)."""
    return _build_config(_ContextReader(app.node.try_get_context))
