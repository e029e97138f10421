# models.py
"""
Data models used by the analyzer.

- Keep simple, serializable dataclasses for resources, findings and the run report.
- Resources and findings are frozen: both passes read them, nothing edits them.
- Extend Finding with metadata for rule IDs and context.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from config import INPUT_COST_PER_1000, OUTPUT_COST_PER_1000


class Severity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        """
        Case-insensitive lookup ("HIGH", "high", "High" all work).
        Raises ValueError for anything else.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.strip().lower():
                    return member
        raise ValueError(f"Unknown severity: {value!r}")


class Category(str, Enum):
    SECURITY = "Security"
    COST_OPTIMIZATION = "Cost Optimization"
    COMPLIANCE = "Compliance"
    OPERATIONAL_EXCELLENCE = "Operational Excellence"

    @classmethod
    def parse(cls, value: Any) -> "Category":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.strip().lower():
                    return member
        raise ValueError(f"Unknown category: {value!r}")


class AnalysisMode(str, Enum):
    """
    AI analysis modes selectable with --ai-insights.
    Each mode maps to exactly one canonical finding category.
    """
    SECURITY = "security"
    COST = "cost"
    COMPLIANCE = "compliance"
    RISK = "risk"

    @property
    def category(self) -> Category:
        return _MODE_CATEGORIES[self]

    @property
    def description(self) -> str:
        return _MODE_DESCRIPTIONS[self]

    @classmethod
    def parse_list(cls, values: Optional[Iterable[str]]) -> List["AnalysisMode"]:
        """
        Turn user input into a de-duplicated mode list, defaulting to all modes.
        """
        if not values:
            return list(cls)
        modes: List[AnalysisMode] = []
        for raw in values:
            mode = raw if isinstance(raw, cls) else cls(str(raw).strip().lower())
            if mode not in modes:
                modes.append(mode)
        return modes


_MODE_CATEGORIES = {
    AnalysisMode.SECURITY: Category.SECURITY,
    AnalysisMode.COST: Category.COST_OPTIMIZATION,
    AnalysisMode.COMPLIANCE: Category.COMPLIANCE,
    AnalysisMode.RISK: Category.OPERATIONAL_EXCELLENCE,
}

_MODE_DESCRIPTIONS = {
    AnalysisMode.SECURITY: "Identify security vulnerabilities and misconfigurations.",
    AnalysisMode.COST: "Analyze cost inefficiencies and suggest optimizations.",
    AnalysisMode.COMPLIANCE: "Check for compliance violations based on AWS best practices.",
    AnalysisMode.RISK: "Assess operational risks and stability issues.",
}


@dataclass(frozen=True)
class Resource:
    """
    One declaration from the template's Resources map.

    Fields:
    - id: logical id, unique within the template
    - type: namespaced type (e.g., "AWS::S3::Bucket")
    - properties: free-form property bag, may be arbitrarily nested
    - metadata: optional CDK metadata (e.g., "aws:cdk:path")
    - depends_on: logical ids from DependsOn
    """
    id: str
    type: str
    properties: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    depends_on: Tuple[str, ...] = ()

    @property
    def service(self) -> str:
        # "AWS::Lambda::Function" -> "lambda"
        parts = self.type.split("::")
        return parts[1].lower() if len(parts) > 1 else ""

    def prop(self, *path: str, default: Any = None) -> Any:
        """
        Walk nested properties; returns default when any step is absent or not a mapping.
        """
        node: Any = self.properties
        for key in path:
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return default if node is None else node

    def to_declaration(self) -> Dict[str, Any]:
        decl: Dict[str, Any] = {"Type": self.type, "Properties": self.properties}
        if self.metadata:
            decl["Metadata"] = self.metadata
        if self.depends_on:
            decl["DependsOn"] = list(self.depends_on)
        return decl

    @classmethod
    def from_declaration(cls, resource_id: str, decl: Dict[str, Any]) -> "Resource":
        if not isinstance(decl, dict):
            raise ValueError(f"Resource {resource_id} is not a mapping")
        depends = decl.get("DependsOn") or ()
        if isinstance(depends, str):
            depends = (depends,)
        elif not isinstance(depends, (list, tuple)):
            raise ValueError(f"Resource {resource_id} has an invalid DependsOn")
        props = decl.get("Properties")
        meta = decl.get("Metadata")
        return cls(
            id=resource_id,
            type=str(decl.get("Type", "")),
            properties=props if isinstance(props, dict) else {},
            metadata=meta if isinstance(meta, dict) else {},
            depends_on=tuple(str(d) for d in depends),
        )


def resources_from_template(template: Dict[str, Any]) -> Dict[str, Resource]:
    """
    Build the resource map from a synthesized template, keeping declaration order.
    Only the "Resources" section is consumed.
    """
    raw = template.get("Resources") or {}
    if not isinstance(raw, dict):
        raise ValueError("Template 'Resources' section is not a mapping")
    return {rid: Resource.from_declaration(rid, decl) for rid, decl in raw.items()}


@dataclass(frozen=True)
class Finding:
    """
    Represents a single finding against one resource.

    Fields:
    - resource: logical id of the resource
    - issue: short human-readable description
    - recommendation: actionable fix
    - severity / category: canonical enums
    - metadata: optional structured metadata (rule id, STRIDE threat, source)
    """
    resource: str
    issue: str
    recommendation: str
    severity: Severity
    category: Category
    metadata: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    @property
    def identity(self) -> Tuple[str, str]:
        """Stable identifier used to de-duplicate findings."""
        return (self.resource, " ".join(self.issue.lower().split()))

    @property
    def source(self) -> str:
        return self.metadata.get("source", "rule")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "resource": self.resource,
            "issue": self.issue,
            "recommendation": self.recommendation,
            "severity": self.severity.value,
            "category": self.category.value,
        }
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Finding":
        return cls(
            resource=str(data["resource"]),
            issue=str(data["issue"]),
            recommendation=str(data.get("recommendation", "")),
            severity=Severity.parse(data["severity"]),
            category=Category.parse(data["category"]),
            metadata={str(k): str(v) for k, v in (data.get("metadata") or {}).items()},
        )


class TokenUsage:
    """
    Running token counter for the AI pass. Safe to add() from worker threads.
    """

    def __init__(self, input_tokens: int = 0, output_tokens: int = 0):
        self._lock = threading.Lock()
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens

    def add(self, input_tokens: int, output_tokens: int) -> None:
        with self._lock:
            self.input_tokens += int(input_tokens or 0)
            self.output_tokens += int(output_tokens or 0)

    @property
    def estimated_cost(self) -> float:
        cost = (self.input_tokens / 1000) * INPUT_COST_PER_1000
        cost += (self.output_tokens / 1000) * OUTPUT_COST_PER_1000
        return round(cost, 6)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "estimatedCost": self.estimated_cost,
        }


@dataclass
class AnalysisReport:
    """
    The run's sole artifact, assembled once after both passes complete.
    """
    issues: List[str]
    optimizations: List[str]
    recommendations: List[str]
    timestamp: str
    status: str
    findings: Dict[str, List[Finding]] = field(default_factory=dict)
    token_usage: Optional[TokenUsage] = None
    summary: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.status == "passed"

    def all_findings(self) -> List[Finding]:
        return [f for group in self.findings.values() for f in group]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "issues": list(self.issues),
            "optimizations": list(self.optimizations),
            "recommendations": list(self.recommendations),
            "timestamp": self.timestamp,
            "status": self.status,
            "findings": {
                rid: [f.to_dict() for f in group] for rid, group in self.findings.items()
            },
        }
        if self.token_usage is not None:
            data["tokenUsage"] = self.token_usage.to_dict()
        if self.summary is not None:
            data["summary"] = self.summary
        return data
