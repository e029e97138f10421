# scanner/evaluator.py
"""
Deterministic rule pass.

- evaluate_resources applies the selected rule groups (all by default) to every resource.
- Output keeps resource declaration order, and catalog order within a resource.
- A rule that raises is logged and skipped for that resource only.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from models import Finding, Resource
from scanner.errors import RuleEvaluationError
from scanner.rules import RULE_CATALOG, RuleGroup

logger = logging.getLogger("cdk_insights.rules")


def resolve_groups(groups: Optional[Iterable[Any]]) -> List[RuleGroup]:
    """
    Normalize a caller's group selection; None or empty means every group, in catalog order.
    """
    if not groups:
        return list(RULE_CATALOG)
    wanted = {RuleGroup.parse(g) for g in groups}
    return [g for g in RULE_CATALOG if g in wanted]


def evaluate_resource(resource: Resource, groups: List[RuleGroup]) -> List[Finding]:
    findings: List[Finding] = []
    for group in groups:
        for rule in RULE_CATALOG[group]:
            try:
                findings.extend(rule(resource))
            except Exception as e:
                err = RuleEvaluationError(rule.__name__, resource.id, e)
                logger.warning("Skipping rule: %s", err)
    return findings


def evaluate_resources(resources: Dict[str, Resource],
                       groups: Optional[Iterable[Any]] = None) -> Dict[str, List[Finding]]:
    """
    Run the rule catalog over all resources.
    Resources without findings are left out of the result.
    """
    selected = resolve_groups(groups)
    results: Dict[str, List[Finding]] = {}
    for rid, resource in resources.items():
        findings = evaluate_resource(resource, selected)
        if findings:
            results[rid] = findings
    logger.info("Rule pass: %d finding(s) across %d resource(s)",
                sum(len(v) for v in results.values()), len(results))
    return results


def filter_resources(resources: Dict[str, Resource],
                     groups: Optional[Iterable[Any]] = None) -> Dict[str, Resource]:
    """
    Keep the resources covered by the selected groups; used to scope the AI pass.
    """
    if not groups:
        return dict(resources)
    selected = resolve_groups(groups)
    return {rid: r for rid, r in resources.items() if any(g.covers(r) for g in selected)}
