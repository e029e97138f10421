# scanner/analysis.py
"""
Orchestration of the rule pass and the AI pass.

- AIAnalyzer runs prompt -> cache lookup -> Bedrock -> parse -> cache store per resource,
  concurrently up to max_workers, and returns results in declaration order.
- merge_findings combines both passes per resource (rule findings first, duplicates dropped).
- build_report assembles the AnalysisReport; only rule findings decide the status.
- run_analysis ties it together for one synthesized template.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from config import (
    DEFAULT_MAX_CONCURRENT_REQUESTS,
    MAX_CONCURRENT_REQUESTS_CEILING,
    MAX_RESOURCE_CHARS,
)
from models import (
    AnalysisMode,
    AnalysisReport,
    Category,
    Finding,
    Resource,
    TokenUsage,
    resources_from_template,
)
from scanner.cache import FindingCache, cache_key
from scanner.errors import AIUnavailable, MalformedResponse
from scanner.evaluator import evaluate_resources, filter_resources
from scanner.parser import parse_findings_response, parse_summary_response
from scanner.prompt import build_resource_prompt, build_summary_prompt

logger = logging.getLogger("cdk_insights.analysis")

SUMMARY_FAILED = "AI failed to generate a summary."
SUMMARY_EMPTY = "No findings to summarize."


class AIAnalyzer:
    """
    AI pass over a set of resources. One instance per run; the cache may outlive it.
    """

    def __init__(self, client, model_id: str, cache: Optional[FindingCache] = None,
                 modes: Optional[Iterable[Any]] = None, max_chars: int = MAX_RESOURCE_CHARS,
                 max_workers: int = DEFAULT_MAX_CONCURRENT_REQUESTS,
                 usage: Optional[TokenUsage] = None):
        self.client = client
        self.model_id = model_id
        self.cache = cache if cache is not None else FindingCache()
        self.modes = AnalysisMode.parse_list(modes)
        self.max_chars = max_chars
        self.max_workers = max(1, min(int(max_workers), MAX_CONCURRENT_REQUESTS_CEILING))
        self.usage = usage if usage is not None else TokenUsage()
        self._inflight_guard = threading.Lock()
        self._inflight: Dict[str, threading.Lock] = {}

    @contextmanager
    def _claim(self, key: str):
        # Serializes work on one cache key so identical resources hit Bedrock once
        with self._inflight_guard:
            lock = self._inflight.setdefault(key, threading.Lock())
        with lock:
            yield

    def analyze_resource(self, resource: Resource) -> List[Finding]:
        """
        AI findings for one resource; [] when Bedrock is unavailable or the answer is unusable.
        """
        key = cache_key(resource, self.modes)
        with self._claim(key):
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Cache hit for %s", resource.id)
                return [replace(f, resource=resource.id) for f in cached]

            prompt = build_resource_prompt(resource, self.modes, self.max_chars)
            try:
                response = self.client.generate(prompt, self.model_id)
            except AIUnavailable as e:
                logger.error("AI analysis failed for %s: %s", resource.id, e)
                return []
            self.usage.add(response.input_tokens, response.output_tokens)

            try:
                findings = parse_findings_response(response.text, resource.id)
            except MalformedResponse as e:
                logger.error("Unusable AI response for %s: %s", resource.id, e)
                logger.debug("Raw response for %s: %s", resource.id, e.raw)
                return []

            self.cache.set(key, findings)
            logger.info("AI pass: %d finding(s) for %s", len(findings), resource.id)
            return findings

    def analyze_resources(self, resources: Dict[str, Resource]) -> Dict[str, List[Finding]]:
        """
        Analyze every resource, returning findings keyed by id in declaration order.
        """
        if not resources:
            return {}
        if self.max_workers == 1 or len(resources) == 1:
            return {rid: self.analyze_resource(r) for rid, r in resources.items()}

        workers = min(self.max_workers, len(resources))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {rid: pool.submit(self.analyze_resource, r) for rid, r in resources.items()}
            # Preserve declaration order regardless of completion order
            return {rid: futures[rid].result() for rid in resources}

    def summarize(self, findings: List[Finding]) -> str:
        if not findings:
            return SUMMARY_EMPTY
        try:
            response = self.client.generate(build_summary_prompt(findings), self.model_id)
            self.usage.add(response.input_tokens, response.output_tokens)
            return parse_summary_response(response.text)
        except (AIUnavailable, MalformedResponse) as e:
            logger.error("AI summary generation failed: %s", e)
            return SUMMARY_FAILED


def create_analyzer(client, preferred_model: Optional[str] = None, **kwargs) -> Optional[AIAnalyzer]:
    """
    Pick a model and build an AIAnalyzer, or return None when no model is usable.
    """
    try:
        model_id = client.select_model(preferred_model)
    except AIUnavailable as e:
        logger.warning("AI analysis disabled for this run: %s", e)
        return None
    return AIAnalyzer(client, model_id, **kwargs)


def merge_findings(rule_findings: Dict[str, List[Finding]], ai_findings: Dict[str, List[Finding]],
                   order: Iterable[str]) -> Dict[str, List[Finding]]:
    """
    Per-resource union in declaration order. A finding whose (resource, issue) identity
    was already seen is dropped, so rule findings win over AI duplicates.
    """
    merged: Dict[str, List[Finding]] = {}
    for rid in order:
        seen = set()
        combined: List[Finding] = []
        for f in rule_findings.get(rid, []) + ai_findings.get(rid, []):
            if f.identity in seen:
                continue
            seen.add(f.identity)
            combined.append(f)
        if combined:
            merged[rid] = combined
    return merged


def format_finding(f: Finding) -> str:
    return f"[{f.severity.value}] {f.issue} ({f.resource})"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_report(merged: Dict[str, List[Finding]], rule_findings: Dict[str, List[Finding]],
                 usage: Optional[TokenUsage] = None, summary: Optional[str] = None,
                 timestamp: Optional[str] = None) -> AnalysisReport:
    issues: List[str] = []
    optimizations: List[str] = []
    recommendations: List[str] = []
    for group in merged.values():
        for f in group:
            if f.category is Category.COST_OPTIMIZATION:
                optimizations.append(format_finding(f))
            else:
                issues.append(format_finding(f))
            rec = f"{f.recommendation} ({f.resource})"
            if f.recommendation and rec not in recommendations:
                recommendations.append(rec)

    # AI findings never decide the status
    failed = any(
        f.category is not Category.COST_OPTIMIZATION
        for group in rule_findings.values() for f in group
    )
    return AnalysisReport(
        issues=issues,
        optimizations=optimizations,
        recommendations=recommendations,
        timestamp=timestamp or utc_timestamp(),
        status="failed" if failed else "passed",
        findings=merged,
        token_usage=usage,
        summary=summary,
    )


def run_analysis(template: Dict[str, Any], groups: Optional[Iterable[Any]] = None,
                 analyzer: Optional[AIAnalyzer] = None, summarize: bool = False,
                 index=None) -> AnalysisReport:
    """
    Analyze one synthesized template. analyzer=None runs the rule pass only.
    index, when given, receives the AI findings via bulk_index after the run.
    """
    groups = list(groups) if groups else None
    resources = resources_from_template(template)
    logger.info("Analyzing %d resource(s)", len(resources))

    rule_findings = evaluate_resources(resources, groups)

    ai_findings: Dict[str, List[Finding]] = {}
    usage = None
    if analyzer is not None:
        targets = filter_resources(resources, groups)
        logger.info("Running AI analysis on %d resource(s) with %s", len(targets), analyzer.model_id)
        ai_findings = analyzer.analyze_resources(targets)
        usage = analyzer.usage

    merged = merge_findings(rule_findings, ai_findings, resources)

    summary = None
    if summarize and analyzer is not None:
        summary = analyzer.summarize([f for group in merged.values() for f in group])

    if index is not None:
        ai_list = [f for group in ai_findings.values() for f in group]
        if ai_list:
            try:
                index.bulk_index(ai_list)
            except (ClientError, BotoCoreError) as e:
                logger.warning("Could not index AI findings: %s", e)

    return build_report(merged, rule_findings, usage=usage, summary=summary)
