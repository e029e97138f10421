# tests/test_evaluator.py
"""
Tests for the rule pass: group selection, ordering, and per-rule failure isolation.
"""

import logging

import pytest

from models import resources_from_template
from scanner.evaluator import evaluate_resources, filter_resources, resolve_groups
from scanner.rules import RULE_CATALOG, RuleGroup


def test_selects_every_group_by_default(sample_template):
    resources = resources_from_template(sample_template)
    results = evaluate_resources(resources)
    assert list(results) == ["UnversionedBucket", "HighMemoryLambda"]
    assert "S3-VERS-001" in [f.metadata["rule_id"] for f in results["UnversionedBucket"]]
    assert [f.metadata["rule_id"] for f in results["HighMemoryLambda"]] == ["LAMBDA-001"]


def test_group_selection_limits_rules(sample_template):
    resources = resources_from_template(sample_template)
    results = evaluate_resources(resources, ["lambda"])
    assert list(results) == ["HighMemoryLambda"]


def test_output_is_deterministic(sample_template):
    resources = resources_from_template(sample_template)
    first = evaluate_resources(resources)
    second = evaluate_resources(resources)
    assert first == second
    # catalog order within a resource
    assert [f.metadata["rule_id"] for f in first["UnversionedBucket"]] == [
        "S3-VERS-001", "S3-ENC-001", "S3-PAB-001", "S3-LOG-001",
    ]


def test_unmatched_types_are_omitted():
    resources = resources_from_template({"Resources": {"Topic": {"Type": "AWS::SNS::Topic", "Properties": {}}}})
    assert evaluate_resources(resources) == {}


def test_empty_template():
    assert evaluate_resources(resources_from_template({"Resources": {}})) == {}
    assert evaluate_resources(resources_from_template({})) == {}


def test_broken_rule_is_skipped_and_others_continue(caplog):
    template = {
        "Resources": {
            # a bare string ingress entry makes ec2_open_ingress raise
            "OddGroup": {"Type": "AWS::EC2::SecurityGroup", "Properties": {"SecurityGroupIngress": ["0.0.0.0/0"]}},
            "Fn": {"Type": "AWS::Lambda::Function", "Properties": {"MemorySize": 4096}},
        }
    }
    with caplog.at_level(logging.WARNING, logger="cdk_insights.rules"):
        results = evaluate_resources(resources_from_template(template))
    assert "OddGroup" not in results
    assert len(results["Fn"]) == 1
    assert "ec2_open_ingress" in caplog.text


def test_failing_rule_does_not_block_later_rules(monkeypatch):
    def exploding(resource):
        raise KeyError("boom")

    monkeypatch.setitem(RULE_CATALOG, RuleGroup.S3, [exploding] + RULE_CATALOG[RuleGroup.S3])
    resources = resources_from_template({"Resources": {"B": {"Type": "AWS::S3::Bucket"}}})
    results = evaluate_resources(resources, [RuleGroup.S3])
    assert results["B"][0].metadata["rule_id"] == "S3-VERS-001"


def test_resolve_groups():
    assert resolve_groups(None) == list(RULE_CATALOG)
    assert resolve_groups(["Lambda", "s3"]) == [RuleGroup.S3, RuleGroup.LAMBDA]
    with pytest.raises(ValueError):
        resolve_groups(["nope"])


def test_filter_resources_by_group_and_service(sample_template):
    sample_template["Resources"]["Topic"] = {"Type": "AWS::SNS::Topic", "Properties": {}}
    sample_template["Resources"]["Nat"] = {"Type": "AWS::EC2::NatGateway", "Properties": {}}
    resources = resources_from_template(sample_template)
    assert list(filter_resources(resources, None)) == ["UnversionedBucket", "HighMemoryLambda", "Topic", "Nat"]
    assert list(filter_resources(resources, ["s3"])) == ["UnversionedBucket"]
    assert list(filter_resources(resources, ["natgateway"])) == ["Nat"]
