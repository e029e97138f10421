# tests/test_rules.py
"""
Unit tests for individual rules in the catalog.
"""

import pytest

from models import Category, Resource, Severity
from scanner import rules


def res(rtype, props=None, rid="R1"):
    return Resource(id=rid, type=rtype, properties=props or {})


def rule_ids(findings):
    return [f.metadata["rule_id"] for f in findings]


COMPLIANT_BUCKET = {
    "VersioningConfiguration": {"Status": "Enabled"},
    "BucketEncryption": {
        "ServerSideEncryptionConfiguration": [
            {"ServerSideEncryptionByDefault": {"SSEAlgorithm": "aws:kms"}}
        ]
    },
    "PublicAccessBlockConfiguration": {
        "BlockPublicAcls": True,
        "IgnorePublicAcls": True,
        "BlockPublicPolicy": True,
        "RestrictPublicBuckets": True,
    },
    "LoggingConfiguration": {"DestinationBucketName": "logs"},
}


def test_bucket_without_versioning_or_encryption():
    bucket = res("AWS::S3::Bucket")
    assert rule_ids(rules.s3_versioning(bucket)) == ["S3-VERS-001"]
    enc = rules.s3_default_encryption(bucket)
    assert rule_ids(enc) == ["S3-ENC-001"]
    assert enc[0].category is Category.SECURITY


def test_suspended_versioning_is_flagged():
    bucket = res("AWS::S3::Bucket", {"VersioningConfiguration": {"Status": "Suspended"}})
    assert rule_ids(rules.s3_versioning(bucket)) == ["S3-VERS-001"]


def test_compliant_bucket_has_no_findings():
    bucket = res("AWS::S3::Bucket", COMPLIANT_BUCKET)
    for rule in rules.RULE_CATALOG[rules.RuleGroup.S3]:
        assert rule(bucket) == []


def test_public_access_block_permissive_reports_first_setting():
    props = dict(COMPLIANT_BUCKET)
    props["PublicAccessBlockConfiguration"] = {"BlockPublicAcls": True, "IgnorePublicAcls": "false"}
    findings = rules.s3_public_access_block(res("AWS::S3::Bucket", props))
    assert rule_ids(findings) == ["S3-PAB-002"]
    assert "IgnorePublicAcls" in findings[0].issue


def test_public_canned_acl_and_website():
    bucket = res("AWS::S3::Bucket", {"AccessControl": "PublicRead", "WebsiteConfiguration": {"IndexDocument": "index.html"}})
    assert rules.s3_public_acl(bucket)[0].severity is Severity.CRITICAL
    assert rule_ids(rules.s3_website_hosting(bucket)) == ["S3-WEB-001"]


def test_public_bucket_policy():
    policy = {
        "PolicyDocument": {
            "Statement": [
                {"Effect": "Allow", "Principal": {"AWS": "*"}, "Action": "s3:GetObject", "Resource": "*"}
            ]
        }
    }
    assert rule_ids(rules.s3_public_bucket_policy(res("AWS::S3::BucketPolicy", policy))) == ["S3-POLICY-001"]

    private = {"PolicyDocument": {"Statement": [{"Effect": "Allow", "Principal": {"Service": "logging.s3.amazonaws.com"}}]}}
    assert rules.s3_public_bucket_policy(res("AWS::S3::BucketPolicy", private)) == []


@pytest.mark.parametrize("action", ["*", ["s3:GetObject", "*"]])
def test_iam_wildcard_action(action):
    policy = res("AWS::IAM::Policy", {"PolicyDocument": {"Statement": [{"Effect": "Allow", "Action": action, "Resource": "*"}]}})
    findings = rules.iam_wildcard_actions(policy)
    assert rule_ids(findings) == ["IAM-001"]
    assert findings[0].metadata["stride"] == "Elevation of Privilege"


def test_iam_deny_wildcard_is_fine():
    policy = res("AWS::IAM::Policy", {"PolicyDocument": {"Statement": {"Effect": "Deny", "Action": "*"}}})
    assert rules.iam_wildcard_actions(policy) == []


def test_iam_role_with_administrator_access_intrinsic():
    role = res("AWS::IAM::Role", {
        "ManagedPolicyArns": [
            {"Fn::Join": ["", ["arn:", {"Ref": "AWS::Partition"}, ":iam::aws:policy/AdministratorAccess"]]}
        ]
    })
    assert rule_ids(rules.iam_admin_managed_policy(role)) == ["IAM-002"]


def test_security_group_open_ingress():
    sg = res("AWS::EC2::SecurityGroup", {"SecurityGroupIngress": [{"CidrIp": "10.0.0.0/8"}, {"CidrIp": "0.0.0.0/0"}]})
    assert rule_ids(rules.ec2_open_ingress(sg)) == ["EC2-SG-001"]
    closed = res("AWS::EC2::SecurityGroup", {"SecurityGroupIngress": [{"CidrIp": "10.0.0.0/8"}]})
    assert rules.ec2_open_ingress(closed) == []
    standalone = res("AWS::EC2::SecurityGroupIngress", {"CidrIpv6": "::/0", "IpProtocol": "tcp"})
    assert rule_ids(rules.ec2_open_ingress(standalone)) == ["EC2-SG-001"]


@pytest.mark.parametrize("memory,expected", [(2048, 1), ("3008", 1), (1024, 0), (None, 0), ("lots", 0)])
def test_lambda_memory_threshold(memory, expected):
    props = {} if memory is None else {"MemorySize": memory}
    findings = rules.lambda_high_memory(res("AWS::Lambda::Function", props))
    assert len(findings) == expected
    if findings:
        assert findings[0].category is Category.COST_OPTIMIZATION


@pytest.mark.parametrize("rtype,props,rule,rule_id", [
    ("AWS::ApiGateway::RestApi", {}, rules.apigateway_public_endpoint, "APIGW-001"),
    ("AWS::Cognito::UserPool", {}, rules.cognito_password_policy, "COGNITO-001"),
    ("AWS::Cognito::UserPool", {}, rules.cognito_account_recovery, "COGNITO-002"),
    ("AWS::RDS::DBInstance", {"PubliclyAccessible": "true"}, rules.rds_public_instance, "RDS-001"),
    ("AWS::RDS::DBInstance", {}, rules.rds_storage_encryption, "RDS-002"),
    ("AWS::Redshift::Cluster", {"PubliclyAccessible": True}, rules.redshift_public_cluster, "REDSHIFT-001"),
    ("AWS::EC2::VPC", {"CidrBlock": "10.0.0.0/16"}, rules.vpc_dns_hostnames, "VPC-001"),
    ("AWS::OpenSearchService::Domain", {}, rules.opensearch_node_to_node_encryption, "OPENSEARCH-001"),
    ("AWS::ElastiCache::ReplicationGroup", {}, rules.elasticache_transit_encryption, "ELASTICACHE-001"),
    ("AWS::ElasticBeanstalk::Environment", {"OptionSettings": []}, rules.beanstalk_load_balanced, "EB-001"),
    ("AWS::StepFunctions::StateMachine", {}, rules.stepfunctions_logging, "SFN-001"),
    ("AWS::Events::Rule", {"ScheduleExpression": "rate(1 hour)"}, rules.events_rule_bus, "EVENTS-001"),
    ("AWS::EC2::NatGateway", {"SubnetId": "subnet-1"}, rules.nat_gateway_cost, "NAT-001"),
    ("AWS::EC2::NatGateway", {"SubnetId": "subnet-1", "SubnetRouteTableAssociations": [{"Ref": "Assoc"}]},
     rules.nat_gateway_cost, "NAT-002"),
    ("AWS::EC2::Instance", {"InstanceType": "t2.micro"}, rules.ec2_previous_generation_instance, "EC2-COST-001"),
    ("AWS::DynamoDB::Table", {"BillingMode": "PROVISIONED"}, rules.dynamodb_billing_mode, "DDB-001"),
    ("AWS::SQS::Queue", {}, rules.sqs_encryption, "SQS-001"),
])
def test_rule_triggers(rtype, props, rule, rule_id):
    assert rule_ids(rule(res(rtype, props))) == [rule_id]


@pytest.mark.parametrize("rtype,props,rule", [
    ("AWS::ApiGateway::RestApi", {"EndpointConfiguration": {"Types": ["PRIVATE"]}}, rules.apigateway_public_endpoint),
    ("AWS::RDS::DBInstance", {"PubliclyAccessible": False}, rules.rds_public_instance),
    ("AWS::RDS::DBInstance", {"DBClusterIdentifier": {"Ref": "Cluster"}}, rules.rds_storage_encryption),
    ("AWS::EC2::VPC", {"EnableDnsHostnames": True}, rules.vpc_dns_hostnames),
    ("AWS::OpenSearchService::Domain", {"NodeToNodeEncryptionOptions": {"Enabled": True}}, rules.opensearch_node_to_node_encryption),
    ("AWS::ElasticBeanstalk::Environment", {"OptionSettings": [
        {"Namespace": "aws:elasticbeanstalk:environment", "OptionName": "EnvironmentType", "Value": "LoadBalanced"}
    ]}, rules.beanstalk_load_balanced),
    ("AWS::Events::Rule", {"EventBusName": "orders"}, rules.events_rule_bus),
    ("AWS::EC2::Instance", {"InstanceType": "t3.micro"}, rules.ec2_previous_generation_instance),
    ("AWS::DynamoDB::Table", {"BillingMode": "PAY_PER_REQUEST"}, rules.dynamodb_billing_mode),
    ("AWS::SQS::Queue", {"SqsManagedSseEnabled": True}, rules.sqs_encryption),
])
def test_rule_quiet_when_compliant(rtype, props, rule):
    assert rule(res(rtype, props)) == []


def test_nat_gateway_branches_on_route_table_association():
    bare = rules.nat_gateway_cost(res("AWS::EC2::NatGateway", {}))[0]
    routed = rules.nat_gateway_cost(res("AWS::EC2::NatGateway", {"SubnetRouteTableAssociations": ["rtb-1"]}))[0]
    assert "no route table association" in bare.issue
    assert "hourly" in routed.issue
    assert bare.category is routed.category is Category.COST_OPTIMIZATION


def test_dynamodb_default_billing_is_provisioned():
    finding = rules.dynamodb_billing_mode(res("AWS::DynamoDB::Table", {}))[0]
    assert "BillingMode is not PAY_PER_REQUEST" in finding.issue
    assert "auto scaling" in finding.recommendation


def test_rules_ignore_other_types():
    topic = res("AWS::SNS::Topic", {"TopicName": "alerts"})
    for group_rules in rules.RULE_CATALOG.values():
        for rule in group_rules:
            assert rule(topic) == []


def test_every_group_has_rules_and_types():
    assert set(rules.RULE_CATALOG) == set(rules.RuleGroup)
    assert set(rules.GROUP_RESOURCE_TYPES) == set(rules.RuleGroup)


def test_rule_group_parse():
    assert rules.RuleGroup.parse("natgateway") is rules.RuleGroup.NAT_GATEWAY
    assert rules.RuleGroup.parse("API_GATEWAY") is rules.RuleGroup.API_GATEWAY
    with pytest.raises(ValueError):
        rules.RuleGroup.parse("cloudfront")
