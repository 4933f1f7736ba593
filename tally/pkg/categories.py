"""
Resource taxonomy shared by cost correlation and recommendation rules.

Resource ``type`` strings are free text (``"EC2 t3.micro"``,
``"Microsoft.Compute/virtualMachines"``, ``"storage.googleapis.com/Bucket"``)
and cost ``service`` labels come from a different API surface entirely.
This table is the single place that maps both onto a small set of
categories.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ResourceCategory(str, Enum):
    COMPUTE = "compute"
    STORAGE = "storage"
    NETWORK = "network"
    DATABASE = "database"
    CACHE = "cache"
    MESSAGING = "messaging"
    WEB = "web"
    CONTAINER = "container"
    SECURITY = "security"
    OTHER = "other"


@dataclass(frozen=True)
class CategoryRule:
    """Maps resource type fragments to the cost-service keywords they bill under."""

    category: ResourceCategory
    type_patterns: tuple[str, ...]
    cost_keywords: tuple[str, ...]


# Evaluated top to bottom; the first rule whose pattern occurs in the
# lower-cased resource type wins. Specific families come before the broad
# compute/storage/network ones so e.g. "Microsoft.Compute/disks" is storage
# and "Azure Cache for Redis" is not classified as a database.
CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule(
        ResourceCategory.SECURITY,
        ("microsoft.security", "microsoft.keyvault", "key vault", "kms", "guardduty"),
        ("microsoft.security", "security", "key vault", "kms"),
    ),
    CategoryRule(
        ResourceCategory.CONTAINER,
        ("microsoft.containerservice", "kubernetes", "aks", "eks", "gke", "container", "fargate"),
        ("kubernetes", "aks", "eks", "container"),
    ),
    CategoryRule(
        ResourceCategory.CACHE,
        ("microsoft.cache", "cache", "redis", "memcached"),
        ("microsoft.cache", "cache", "redis"),
    ),
    CategoryRule(
        ResourceCategory.DATABASE,
        (
            "microsoft.sql",
            "microsoft.dbfor",
            "microsoft.documentdb",
            "database",
            "sql",
            "rds",
            "cosmos",
            "dynamodb",
            "bigtable",
        ),
        (
            "microsoft.dbformysql",
            "microsoft.dbforpostgresql",
            "microsoft.sql",
            "database",
            "sql",
            "mysql",
            "postgresql",
            "rds",
        ),
    ),
    CategoryRule(
        ResourceCategory.MESSAGING,
        ("microsoft.eventhub", "eventhub", "event hub", "microsoft.logic", "logic", "servicebus", "sqs", "sns", "pubsub"),
        ("microsoft.eventhub", "event hub", "eventhub", "microsoft.logic", "logic app", "logic"),
    ),
    CategoryRule(
        ResourceCategory.STORAGE,
        ("microsoft.storage", "storage", "disk", "blob", "s3", "ebs", "bucket", "volume"),
        ("microsoft.storage", "storage", "disk", "blob", "s3"),
    ),
    CategoryRule(
        ResourceCategory.NETWORK,
        (
            "microsoft.network",
            "network",
            "loadbalancer",
            "load balancer",
            "load-balancer",
            "elb",
            "gateway",
            "cdn",
            "cloudfront",
        ),
        ("microsoft.network", "network", "load balancer", "networking", "elb", "gateway"),
    ),
    CategoryRule(
        ResourceCategory.COMPUTE,
        (
            "microsoft.compute",
            "virtualmachine",
            "virtual machine",
            "compute",
            "ec2",
            "instance",
            "vm",
            "server",
        ),
        ("microsoft.compute", "compute", "virtual machines", "vm", "ec2"),
    ),
    CategoryRule(
        ResourceCategory.WEB,
        ("microsoft.web", "app service", "appservice", "web app", "webapp", "app engine", "beanstalk"),
        ("microsoft.web", "app service", "web app", "web"),
    ),
    CategoryRule(
        ResourceCategory.OTHER,
        ("microsoft.operationalinsights", "log analytics"),
        ("microsoft.operationalinsights", "operational insights", "log analytics"),
    ),
)

# Load balancers and gateways only; VNets, NICs, public IPs and CDN
# endpoints are network resources but not "gear" that can sit idle.
NETWORK_GEAR_PATTERNS: tuple[str, ...] = (
    "loadbalancer",
    "load balancer",
    "load-balancer",
    "elb",
    "gateway",
)


def match_rule(resource_type: str) -> CategoryRule | None:
    """Return the first rule matching *resource_type*, if any."""
    lowered = (resource_type or "").lower()
    for rule in CATEGORY_RULES:
        if any(pattern in lowered for pattern in rule.type_patterns):
            return rule
    return None


def classify(resource_type: str) -> ResourceCategory:
    """Classify a free-text resource type into a :class:`ResourceCategory`."""
    rule = match_rule(resource_type)
    return rule.category if rule else ResourceCategory.OTHER


def cost_keywords(resource_type: str) -> tuple[str, ...]:
    """Cost-service keywords a resource of *resource_type* is billed under."""
    rule = match_rule(resource_type)
    return rule.cost_keywords if rule else ()


def is_network_gear(resource_type: str) -> bool:
    """Whether *resource_type* is a load balancer or gateway."""
    lowered = (resource_type or "").lower()
    return classify(resource_type) == ResourceCategory.NETWORK and any(
        pattern in lowered for pattern in NETWORK_GEAR_PATTERNS
    )
