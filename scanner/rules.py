# scanner/rules.py
"""
Rule catalog for synthesized CloudFormation templates.

- Each rule is a pure function: Resource -> List[Finding].
- Rules guard on resource type first and return [] when they do not apply.
- Rules are grouped by RuleGroup; catalog order is the output order tie-break.
- Absent properties only count against a resource when the rule is about a
  protection that must be declared (versioning, encryption, logging, ...).
"""

import json
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from models import Category, Finding, Resource, Severity

Rule = Callable[[Resource], List[Finding]]

PUBLIC_CIDRS = ("0.0.0.0/0", "::/0")
PUBLIC_CANNED_ACLS = ("PublicRead", "PublicReadWrite", "AuthenticatedRead")
PUBLIC_ACCESS_BLOCK_SETTINGS = (
    "BlockPublicAcls",
    "IgnorePublicAcls",
    "BlockPublicPolicy",
    "RestrictPublicBuckets",
)
LAMBDA_MEMORY_THRESHOLD_MB = 1024


class RuleGroup(Enum):
    IAM = "IAM"
    S3 = "S3"
    EC2 = "EC2"
    API_GATEWAY = "APIGateway"
    COGNITO = "Cognito"
    RDS = "RDS"
    REDSHIFT = "Redshift"
    VPC = "VPC"
    OPENSEARCH = "OpenSearch"
    ELASTICACHE = "ElastiCache"
    ELASTIC_BEANSTALK = "ElasticBeanstalk"
    STEP_FUNCTIONS = "StepFunctions"
    EVENTS = "Events"
    NAT_GATEWAY = "NATGateway"
    LAMBDA = "Lambda"
    DYNAMODB = "DynamoDB"
    SQS = "SQS"

    @property
    def resource_types(self) -> Tuple[str, ...]:
        return GROUP_RESOURCE_TYPES[self]

    def covers(self, resource: Resource) -> bool:
        """
        True when the group has rules for this resource's type, or when the
        group name matches the resource's service segment ("s3", "lambda").
        """
        return resource.type in self.resource_types or resource.service == self.value.lower()

    @classmethod
    def parse(cls, value: Any) -> "RuleGroup":
        if isinstance(value, cls):
            return value
        wanted = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == wanted or member.name.lower() == wanted:
                return member
        raise ValueError(f"Unknown rule group: {value!r}")


# --- Pure rule helpers -----------------------------------------------------

def is_truthy(value: Any) -> bool:
    """
    CloudFormation booleans arrive as True or "true" depending on the construct.
    """
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def policy_statements(document: Any) -> List[Dict[str, Any]]:
    """
    Return the statements of a policy document given as a dict or JSON text.
    """
    if isinstance(document, str):
        try:
            document = json.loads(document)
        except ValueError:
            return []
    if not isinstance(document, dict):
        return []
    return [s for s in as_list(document.get("Statement")) if isinstance(s, dict)]


def statement_allows_all_actions(stmt: Dict[str, Any]) -> bool:
    if stmt.get("Effect", "Allow") != "Allow":
        return False
    return "*" in as_list(stmt.get("Action"))


def policy_is_public(document: Any) -> bool:
    """
    Conservative check for public policy patterns.

    - Flags statements with Effect Allow and Principal "*" or AWS "*".
    - This is intentionally simple; complex policies may require more analysis.
    """
    for stmt in policy_statements(document):
        if stmt.get("Effect") != "Allow":
            continue
        principal = stmt.get("Principal")
        if principal == "*":
            return True
        if isinstance(principal, dict):
            aws_pr = principal.get("AWS")
            if aws_pr == "*" or aws_pr == ["*"]:
                return True
    return False


def mentions(value: Any, needle: str) -> bool:
    # Intrinsics (Fn::Join etc.) are opaque; search their serialized form.
    return needle in json.dumps(value, default=str)


def as_number(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def make_finding(resource: Resource, issue: str, recommendation: str, severity: Severity,
                 category: Category, rule_id: str, stride: Optional[str] = None) -> Finding:
    metadata = {"rule_id": rule_id, "source": "rule"}
    if stride:
        metadata["stride"] = stride
    return Finding(
        resource=resource.id,
        issue=issue,
        recommendation=recommendation,
        severity=severity,
        category=category,
        metadata=metadata,
    )


# --- IAM -------------------------------------------------------------------

IAM_POLICY_TYPES = ("AWS::IAM::Policy", "AWS::IAM::ManagedPolicy")


def _iam_documents(resource: Resource) -> Iterable[Any]:
    if resource.type in IAM_POLICY_TYPES:
        yield resource.prop("PolicyDocument")
    elif resource.type == "AWS::IAM::Role":
        for inline in as_list(resource.prop("Policies")):
            if isinstance(inline, dict):
                yield inline.get("PolicyDocument")


def iam_wildcard_actions(resource: Resource) -> List[Finding]:
    for document in _iam_documents(resource):
        if any(statement_allows_all_actions(s) for s in policy_statements(document)):
            return [make_finding(
                resource,
                "IAM policy allows all actions (*)",
                "Replace Action '*' with the specific actions the principal needs.",
                Severity.CRITICAL, Category.SECURITY, "IAM-001",
                stride="Elevation of Privilege",
            )]
    return []


def iam_admin_managed_policy(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::IAM::Role":
        return []
    for arn in as_list(resource.prop("ManagedPolicyArns")):
        if mentions(arn, "policy/AdministratorAccess"):
            return [make_finding(
                resource,
                "IAM role has the AdministratorAccess managed policy attached",
                "Attach a least-privilege policy scoped to the role's workload instead.",
                Severity.HIGH, Category.SECURITY, "IAM-002",
                stride="Elevation of Privilege",
            )]
    return []


# --- S3 --------------------------------------------------------------------

def s3_versioning(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::S3::Bucket":
        return []
    status = resource.prop("VersioningConfiguration", "Status")
    if status == "Enabled":
        return []
    return [make_finding(
        resource,
        "S3 bucket has no versioning",
        "Set VersioningConfiguration.Status to Enabled to protect against overwrites and deletes.",
        Severity.MEDIUM, Category.SECURITY, "S3-VERS-001",
        stride="Tampering",
    )]


def s3_default_encryption(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::S3::Bucket":
        return []
    rules = resource.prop("BucketEncryption", "ServerSideEncryptionConfiguration")
    if rules:
        return []
    return [make_finding(
        resource,
        "S3 bucket has no default encryption",
        "Configure BucketEncryption with SSE-S3 or SSE-KMS.",
        Severity.HIGH, Category.SECURITY, "S3-ENC-001",
        stride="Information Disclosure",
    )]


def s3_public_access_block(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::S3::Bucket":
        return []
    pab = resource.prop("PublicAccessBlockConfiguration")
    if not isinstance(pab, dict):
        return [make_finding(
            resource,
            "S3 bucket has no public access block",
            "Set PublicAccessBlockConfiguration with all four settings enabled.",
            Severity.MEDIUM, Category.SECURITY, "S3-PAB-001",
            stride="Information Disclosure",
        )]
    # If any of the recommended blocks are off, flag once with the first offender
    for setting in PUBLIC_ACCESS_BLOCK_SETTINGS:
        if not is_truthy(pab.get(setting)):
            return [make_finding(
                resource,
                f"S3 public access block is permissive ({setting} is {pab.get(setting)})",
                f"Set {setting} to true.",
                Severity.MEDIUM, Category.SECURITY, "S3-PAB-002",
                stride="Information Disclosure",
            )]
    return []


def s3_public_acl(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::S3::Bucket":
        return []
    acl = resource.prop("AccessControl")
    if acl not in PUBLIC_CANNED_ACLS:
        return []
    return [make_finding(
        resource,
        f"S3 bucket uses public canned ACL {acl}",
        "Remove the public AccessControl setting and grant access through scoped bucket policies.",
        Severity.CRITICAL, Category.SECURITY, "S3-ACL-001",
        stride="Information Disclosure",
    )]


def s3_website_hosting(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::S3::Bucket" or resource.prop("WebsiteConfiguration") is None:
        return []
    return [make_finding(
        resource,
        "S3 bucket has website hosting enabled",
        "Serve static content through CloudFront with origin access control instead.",
        Severity.MEDIUM, Category.SECURITY, "S3-WEB-001",
    )]


def s3_access_logging(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::S3::Bucket" or resource.prop("LoggingConfiguration"):
        return []
    return [make_finding(
        resource,
        "S3 bucket access logging is not enabled",
        "Configure LoggingConfiguration with a dedicated log bucket.",
        Severity.LOW, Category.COMPLIANCE, "S3-LOG-001",
        stride="Repudiation",
    )]


def s3_public_bucket_policy(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::S3::BucketPolicy":
        return []
    if not policy_is_public(resource.prop("PolicyDocument")):
        return []
    return [make_finding(
        resource,
        "S3 bucket policy grants access to any principal (*)",
        "Restrict Principal to specific accounts, roles or services.",
        Severity.CRITICAL, Category.SECURITY, "S3-POLICY-001",
        stride="Information Disclosure",
    )]


# --- EC2 -------------------------------------------------------------------

def ec2_open_ingress(resource: Resource) -> List[Finding]:
    if resource.type == "AWS::EC2::SecurityGroup":
        rules = as_list(resource.prop("SecurityGroupIngress"))
    elif resource.type == "AWS::EC2::SecurityGroupIngress":
        rules = [resource.properties]
    else:
        return []
    for rule in rules:
        if rule.get("CidrIp") in PUBLIC_CIDRS or rule.get("CidrIpv6") in PUBLIC_CIDRS:
            return [make_finding(
                resource,
                "Security group allows unrestricted ingress",
                "Restrict ingress CIDR ranges to known networks.",
                Severity.HIGH, Category.SECURITY, "EC2-SG-001",
                stride="Information Disclosure",
            )]
    return []


def ec2_previous_generation_instance(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::EC2::Instance":
        return []
    instance_type = resource.prop("InstanceType")
    if not isinstance(instance_type, str) or not instance_type.startswith("t2"):
        return []
    return [make_finding(
        resource,
        f"EC2 instance uses previous-generation type {instance_type}",
        "Move to a current-generation burstable type such as t3 or t4g.",
        Severity.LOW, Category.COST_OPTIMIZATION, "EC2-COST-001",
    )]


# --- API Gateway / Cognito -------------------------------------------------

def apigateway_public_endpoint(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::ApiGateway::RestApi":
        return []
    if "PRIVATE" in as_list(resource.prop("EndpointConfiguration", "Types")):
        return []
    return [make_finding(
        resource,
        "API Gateway is publicly accessible",
        "Use a PRIVATE endpoint or put authorization and WAF in front of the API.",
        Severity.MEDIUM, Category.SECURITY, "APIGW-001",
        stride="Information Disclosure",
    )]


def cognito_password_policy(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::Cognito::UserPool" or resource.prop("Policies", "PasswordPolicy"):
        return []
    return [make_finding(
        resource,
        "Cognito user pool has no password policy set",
        "Define Policies.PasswordPolicy with length and complexity requirements.",
        Severity.HIGH, Category.SECURITY, "COGNITO-001",
        stride="Spoofing",
    )]


def cognito_account_recovery(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::Cognito::UserPool" or resource.prop("AccountRecoverySetting"):
        return []
    return [make_finding(
        resource,
        "Cognito user pool does not have account recovery configured",
        "Set AccountRecoverySetting to verified email or phone.",
        Severity.MEDIUM, Category.SECURITY, "COGNITO-002",
        stride="Repudiation",
    )]


# --- Databases -------------------------------------------------------------

def rds_public_instance(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::RDS::DBInstance" or not is_truthy(resource.prop("PubliclyAccessible")):
        return []
    return [make_finding(
        resource,
        "RDS instance is publicly accessible",
        "Set PubliclyAccessible to false and place the instance in private subnets.",
        Severity.HIGH, Category.SECURITY, "RDS-001",
        stride="Information Disclosure",
    )]


def rds_storage_encryption(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::RDS::DBInstance":
        return []
    # Aurora members inherit encryption from the cluster
    if resource.prop("DBClusterIdentifier") is not None or is_truthy(resource.prop("StorageEncrypted")):
        return []
    return [make_finding(
        resource,
        "RDS instance storage is not encrypted",
        "Set StorageEncrypted to true, optionally with a customer-managed KMS key.",
        Severity.HIGH, Category.SECURITY, "RDS-002",
        stride="Information Disclosure",
    )]


def redshift_public_cluster(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::Redshift::Cluster" or not is_truthy(resource.prop("PubliclyAccessible")):
        return []
    return [make_finding(
        resource,
        "Redshift cluster is publicly accessible",
        "Set PubliclyAccessible to false.",
        Severity.HIGH, Category.SECURITY, "REDSHIFT-001",
        stride="Information Disclosure",
    )]


# --- Networking ------------------------------------------------------------

def vpc_dns_hostnames(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::EC2::VPC" or is_truthy(resource.prop("EnableDnsHostnames")):
        return []
    return [make_finding(
        resource,
        "VPC does not have DNS hostnames enabled",
        "Set EnableDnsHostnames to true so interface endpoints and private DNS resolve.",
        Severity.LOW, Category.OPERATIONAL_EXCELLENCE, "VPC-001",
    )]


def nat_gateway_cost(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::EC2::NatGateway":
        return []
    if not resource.prop("SubnetRouteTableAssociations"):
        return [make_finding(
            resource,
            "NAT gateway has no route table association",
            "Associate the NAT gateway with private subnet route tables or remove it; it is billed hourly either way.",
            Severity.LOW, Category.COST_OPTIMIZATION, "NAT-001",
        )]
    return [make_finding(
        resource,
        "NAT gateway incurs hourly and per-GB processing charges",
        "Review NAT usage; VPC gateway endpoints for S3 and DynamoDB avoid NAT data charges.",
        Severity.LOW, Category.COST_OPTIMIZATION, "NAT-002",
    )]


# --- Search / cache / workflow ---------------------------------------------

OPENSEARCH_TYPES = ("AWS::OpenSearchService::Domain", "AWS::Elasticsearch::Domain")
ELASTICACHE_TYPES = ("AWS::ElastiCache::CacheCluster", "AWS::ElastiCache::ReplicationGroup")


def opensearch_node_to_node_encryption(resource: Resource) -> List[Finding]:
    if resource.type not in OPENSEARCH_TYPES:
        return []
    if is_truthy(resource.prop("NodeToNodeEncryptionOptions", "Enabled")):
        return []
    return [make_finding(
        resource,
        "OpenSearch domain lacks node-to-node encryption",
        "Enable NodeToNodeEncryptionOptions.",
        Severity.HIGH, Category.SECURITY, "OPENSEARCH-001",
        stride="Tampering",
    )]


def elasticache_transit_encryption(resource: Resource) -> List[Finding]:
    if resource.type not in ELASTICACHE_TYPES or is_truthy(resource.prop("TransitEncryptionEnabled")):
        return []
    return [make_finding(
        resource,
        "ElastiCache cluster lacks transit encryption",
        "Set TransitEncryptionEnabled to true.",
        Severity.MEDIUM, Category.SECURITY, "ELASTICACHE-001",
        stride="Tampering",
    )]


def beanstalk_load_balanced(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::ElasticBeanstalk::Environment":
        return []
    for setting in as_list(resource.prop("OptionSettings")):
        if (isinstance(setting, dict)
                and setting.get("Namespace") == "aws:elasticbeanstalk:environment"
                and setting.get("OptionName") == "EnvironmentType"
                and setting.get("Value") == "LoadBalanced"):
            return []
    return [make_finding(
        resource,
        "Elastic Beanstalk environment is not load balanced",
        "Set aws:elasticbeanstalk:environment EnvironmentType to LoadBalanced.",
        Severity.MEDIUM, Category.OPERATIONAL_EXCELLENCE, "EB-001",
        stride="Denial of Service",
    )]


def stepfunctions_logging(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::StepFunctions::StateMachine" or resource.prop("LoggingConfiguration"):
        return []
    return [make_finding(
        resource,
        "Step Functions state machine lacks logging configuration",
        "Add a LoggingConfiguration that sends execution history to CloudWatch Logs.",
        Severity.MEDIUM, Category.COMPLIANCE, "SFN-001",
        stride="Repudiation",
    )]


def events_rule_bus(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::Events::Rule" or resource.prop("EventBusName"):
        return []
    return [make_finding(
        resource,
        "EventBridge rule does not specify an event bus",
        "Set EventBusName explicitly so the rule is not silently bound to the default bus.",
        Severity.LOW, Category.OPERATIONAL_EXCELLENCE, "EVENTS-001",
        stride="Tampering",
    )]


# --- Compute / data cost ---------------------------------------------------

def lambda_high_memory(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::Lambda::Function":
        return []
    memory = as_number(resource.prop("MemorySize"))
    if memory is None or memory <= LAMBDA_MEMORY_THRESHOLD_MB:
        return []
    return [make_finding(
        resource,
        f"Lambda function has high memory allocation ({int(memory)} MB)",
        "Right-size MemorySize using measured usage (e.g., AWS Lambda Power Tuning).",
        Severity.MEDIUM, Category.COST_OPTIMIZATION, "LAMBDA-001",
    )]


def dynamodb_billing_mode(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::DynamoDB::Table":
        return []
    # Absent BillingMode means PROVISIONED
    if resource.prop("BillingMode") == "PAY_PER_REQUEST":
        return []
    return [make_finding(
        resource,
        "DynamoDB table uses provisioned capacity (BillingMode is not PAY_PER_REQUEST)",
        "Use PAY_PER_REQUEST or attach auto scaling to the provisioned capacity.",
        Severity.LOW, Category.COST_OPTIMIZATION, "DDB-001",
    )]


def sqs_encryption(resource: Resource) -> List[Finding]:
    if resource.type != "AWS::SQS::Queue":
        return []
    if resource.prop("KmsMasterKeyId") or is_truthy(resource.prop("SqsManagedSseEnabled")):
        return []
    return [make_finding(
        resource,
        "SQS queue does not use KMS encryption",
        "Set KmsMasterKeyId or enable SqsManagedSseEnabled.",
        Severity.MEDIUM, Category.SECURITY, "SQS-001",
        stride="Tampering",
    )]


# --- Catalog ---------------------------------------------------------------

RULE_CATALOG: Dict[RuleGroup, List[Rule]] = {
    RuleGroup.IAM: [iam_wildcard_actions, iam_admin_managed_policy],
    RuleGroup.S3: [
        s3_versioning,
        s3_default_encryption,
        s3_public_access_block,
        s3_public_acl,
        s3_website_hosting,
        s3_access_logging,
        s3_public_bucket_policy,
    ],
    RuleGroup.EC2: [ec2_open_ingress, ec2_previous_generation_instance],
    RuleGroup.API_GATEWAY: [apigateway_public_endpoint],
    RuleGroup.COGNITO: [cognito_password_policy, cognito_account_recovery],
    RuleGroup.RDS: [rds_public_instance, rds_storage_encryption],
    RuleGroup.REDSHIFT: [redshift_public_cluster],
    RuleGroup.VPC: [vpc_dns_hostnames],
    RuleGroup.OPENSEARCH: [opensearch_node_to_node_encryption],
    RuleGroup.ELASTICACHE: [elasticache_transit_encryption],
    RuleGroup.ELASTIC_BEANSTALK: [beanstalk_load_balanced],
    RuleGroup.STEP_FUNCTIONS: [stepfunctions_logging],
    RuleGroup.EVENTS: [events_rule_bus],
    RuleGroup.NAT_GATEWAY: [nat_gateway_cost],
    RuleGroup.LAMBDA: [lambda_high_memory],
    RuleGroup.DYNAMODB: [dynamodb_billing_mode],
    RuleGroup.SQS: [sqs_encryption],
}

GROUP_RESOURCE_TYPES: Dict[RuleGroup, Tuple[str, ...]] = {
    RuleGroup.IAM: IAM_POLICY_TYPES + ("AWS::IAM::Role",),
    RuleGroup.S3: ("AWS::S3::Bucket", "AWS::S3::BucketPolicy"),
    RuleGroup.EC2: ("AWS::EC2::SecurityGroup", "AWS::EC2::SecurityGroupIngress", "AWS::EC2::Instance"),
    RuleGroup.API_GATEWAY: ("AWS::ApiGateway::RestApi",),
    RuleGroup.COGNITO: ("AWS::Cognito::UserPool",),
    RuleGroup.RDS: ("AWS::RDS::DBInstance",),
    RuleGroup.REDSHIFT: ("AWS::Redshift::Cluster",),
    RuleGroup.VPC: ("AWS::EC2::VPC",),
    RuleGroup.OPENSEARCH: OPENSEARCH_TYPES,
    RuleGroup.ELASTICACHE: ELASTICACHE_TYPES,
    RuleGroup.ELASTIC_BEANSTALK: ("AWS::ElasticBeanstalk::Environment",),
    RuleGroup.STEP_FUNCTIONS: ("AWS::StepFunctions::StateMachine",),
    RuleGroup.EVENTS: ("AWS::Events::Rule",),
    RuleGroup.NAT_GATEWAY: ("AWS::EC2::NatGateway",),
    RuleGroup.LAMBDA: ("AWS::Lambda::Function",),
    RuleGroup.DYNAMODB: ("AWS::DynamoDB::Table",),
    RuleGroup.SQS: ("AWS::SQS::Queue",),
}
