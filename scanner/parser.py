# scanner/parser.py
"""
Recover structured findings from free-form model output.

- extract_json: fenced block first, then the outermost {...} span.
- parse_findings_response: strict shape check; any drift is a MalformedResponse.
"""

import json
import re
from typing import Any, Dict, List

from models import Category, Finding, Severity
from scanner.errors import MalformedResponse

_FENCE_RE = re.compile(r"```[ \t]*([A-Za-z0-9_-]*)[ \t]*\r?\n?(.*?)```", re.DOTALL)


def _loads_object(text: str) -> Dict[str, Any]:
    value = json.loads(text)
    if not isinstance(value, dict):
        raise ValueError("top-level JSON value is not an object")
    return value


def extract_json(text: str) -> Dict[str, Any]:
    """
    Return the JSON object embedded in a model response.

    Handles pure JSON, ```json fenced``` blocks (with or without a language tag)
    and JSON surrounded by prose. Raises MalformedResponse when nothing parses.
    """
    if not isinstance(text, str) or not text.strip():
        raise MalformedResponse("Empty AI response", raw=text or "")

    for match in _FENCE_RE.finditer(text):
        try:
            return _loads_object(match.group(2).strip())
        except (ValueError, RecursionError):
            continue

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise MalformedResponse("JSON not found in AI response", raw=text)
    try:
        return _loads_object(text[start:end + 1])
    except (ValueError, RecursionError) as e:
        raise MalformedResponse(f"Invalid JSON in AI response: {e}", raw=text) from e


def _require_text(item: Dict[str, Any], key: str, raw: str) -> str:
    value = item.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedResponse(f"Finding field '{key}' is missing or not text", raw=raw)
    return value.strip()


def parse_findings_response(text: str, resource_id: str) -> List[Finding]:
    """
    Parse a response to build_resource_prompt into findings for resource_id.
    The model's own "resource" value is not trusted; findings are attributed to resource_id.
    """
    payload = extract_json(text)
    issues = payload.get("issues")
    if not isinstance(issues, list):
        raise MalformedResponse("'issues' is missing or not a list", raw=text)

    findings: List[Finding] = []
    for item in issues:
        if not isinstance(item, dict):
            raise MalformedResponse("Finding entry is not an object", raw=text)
        try:
            severity = Severity.parse(item.get("severity"))
            category = Category.parse(item.get("category"))
        except ValueError as e:
            raise MalformedResponse(str(e), raw=text) from e
        findings.append(Finding(
            resource=resource_id,
            issue=_require_text(item, "issue", text),
            recommendation=_require_text(item, "recommendation", text),
            severity=severity,
            category=category,
            metadata={"source": "ai"},
        ))
    return findings


def parse_summary_response(text: str) -> str:
    payload = extract_json(text)
    summary = payload.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        raise MalformedResponse("'summary' is missing or not text", raw=text)
    return summary.strip()
