# scanner/prompt.py
"""
Prompt construction for the Bedrock pass. No side effects.
"""

import json
import logging
from typing import Iterable, List, Optional

from config import MAX_RESOURCE_CHARS, TRUNCATION_MARKER
from models import AnalysisMode, Category, Finding, Resource, Severity

logger = logging.getLogger("cdk_insights.ai")


def truncate_resource(resource: Resource, max_chars: int = MAX_RESOURCE_CHARS) -> str:
    """
    Serialize the declaration and cut it at max_chars, appending a truncation marker.
    """
    text = json.dumps(resource.to_declaration(), indent=2, default=str)
    if len(text) > max_chars:
        logger.debug("Resource %s too large (%d chars), truncating", resource.id, len(text))
        text = text[:max(max_chars, 0)] + TRUNCATION_MARKER
    return text


def _source_location(resource: Resource) -> str:
    path = resource.metadata.get("aws:cdk:path")
    return f"CDK path: {path}" if path else "Unknown source location"


def build_resource_prompt(resource: Resource, modes: Optional[Iterable[AnalysisMode]] = None,
                          max_chars: int = MAX_RESOURCE_CHARS) -> str:
    modes = AnalysisMode.parse_list(modes)
    categories = ", ".join(f"'{c.value}'" for c in Category)
    severities = ", ".join(f"'{s.value}'" for s in reversed(list(Severity)))
    focus = "\n".join(f"- {m.category.value}: {m.description}" for m in modes)
    example = json.dumps({
        "resource": resource.id,
        "issues": [{
            "resource": resource.id,
            "issue": "<the detected issue>",
            "recommendation": "<an actionable fix>",
            "severity": "<one of the severities>",
            "category": "<one of the categories>",
        }],
    }, indent=2)

    return (
        "You are an AWS CloudFormation analysis expert. You review CloudFormation resources "
        "for security, compliance, cost optimization and operational excellence and give "
        "actionable recommendations.\n\n"
        f"Analyze the resource '{resource.id}' of type {resource.type} ({_source_location(resource)}).\n"
        "Focus on:\n"
        f"{focus}\n\n"
        "Resource declaration:\n"
        f"{truncate_resource(resource, max_chars)}\n\n"
        "Respond with ONLY a JSON object of exactly this shape:\n"
        f"{example}\n\n"
        f"'severity' must be one of {severities}. "
        f"'category' must be one of {categories}. "
        "Return an empty 'issues' array if nothing needs attention. "
        "Do not wrap the JSON in markdown code fences, do not add any other text, "
        "and do not repeat these instructions."
    )


def build_summary_prompt(findings: List[Finding]) -> str:
    listing = json.dumps([f.to_dict() for f in findings], indent=2)
    return (
        "Summarize the following AWS CloudFormation analysis findings. Identify the key "
        "security risks, cost inefficiencies, compliance violations and operational risks.\n\n"
        f"Findings:\n{listing}\n\n"
        'Respond with ONLY a JSON object of the shape {"summary": "<concise summary>"} '
        "and no other text."
    )
