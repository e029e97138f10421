# utils.py
"""
Utility helpers: JSON loading, report generation, and console output.

- Uses Rich for colorful, wrapped tables in the terminal.
- Saves the JSON report (the run's artifact) and, on request, an HTML view of it.
"""

import html
import json
import os
from json import JSONDecodeError
from typing import Dict, List, Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from config import DEFAULT_REPORT_FILE
from models import AnalysisReport, Finding, Severity

_console = Console()

_SEVERITY_STYLES = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "bold yellow",
    Severity.LOW: "green",
}


def load_json_file(path: str) -> dict:
    """
    Load JSON from a file and return a Python dict.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Input JSON file not found: {path}.")
    try:
        with open(path, "r", encoding="utf-8-sig") as fh:
            return json.load(fh)
    except JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}: {e.msg} (line {e.lineno} column {e.colno})") from e


def ensure_reports_dir(path: str = "reports") -> str:
    os.makedirs(path, exist_ok=True)
    return path


def findings_to_table_rows(findings: List[Finding]) -> List[List[str]]:
    rows: List[List[str]] = []
    for f in findings:
        rows.append([f.resource, f.issue, f.severity.value, f.category.value, f.source])
    return rows


def render_html(report: AnalysisReport) -> str:
    data = report.to_dict()
    html_rows: List[str] = []
    html_rows.append("<!doctype html>")
    html_rows.append("<html><head><meta charset='utf-8'><title>CDK Insights Report</title>")
    html_rows.append("<style>body{font-family:Arial,Helvetica,sans-serif;margin:20px}table{border-collapse:collapse;width:100%}th,td{border:1px solid #ddd;padding:8px}th{background:#f2f2f2;text-align:left}tr:nth-child(even){background:#fafafa}</style>")
    html_rows.append("</head><body>")
    html_rows.append(f"<h2>CDK Insights Report - {html.escape(report.timestamp)} - status: {report.status}</h2>")
    html_rows.append(f"<p>Total findings: {len(report.all_findings())}</p>")
    if report.token_usage is not None:
        usage = data["tokenUsage"]
        html_rows.append(
            f"<p>Tokens: {usage['inputTokens']} in / {usage['outputTokens']} out "
            f"(estimated cost ${usage['estimatedCost']:.4f})</p>"
        )
    if report.summary:
        html_rows.append(f"<p class='summary'>{html.escape(report.summary)}</p>")
    html_rows.append("<table><thead><tr><th>Resource</th><th>Issue</th><th>Severity</th><th>Category</th><th>Recommendation</th><th>Source</th></tr></thead><tbody>")
    for f in report.all_findings():
        cells = [f.resource, f.issue, f.severity.value, f.category.value, f.recommendation, f.source]
        html_rows.append("<tr>" + "".join(f"<td>{html.escape(c)}</td>" for c in cells) + "</tr>")
    html_rows.append("</tbody></table></body></html>")
    return "\n".join(html_rows)


def save_report(report: AnalysisReport, out_dir: str = "reports",
                file_name: str = DEFAULT_REPORT_FILE, write_html: bool = False) -> Dict[str, str]:
    """
    Write the report and return the written paths ("json", plus "html" when requested).
    """
    out_dir = ensure_reports_dir(out_dir)
    json_path = os.path.join(out_dir, file_name)
    with open(json_path, "w", encoding="utf-8") as fh:
        json.dump(report.to_dict(), fh, indent=2)
    paths = {"json": json_path}

    if write_html:
        html_path = os.path.splitext(json_path)[0] + ".html"
        with open(html_path, "w", encoding="utf-8") as fh:
            fh.write(render_html(report))
        paths["html"] = html_path
    return paths


# --- Console printing with color/wrapping ---

def _severity_text(severity: str) -> Text:
    """
    Return a Rich Text object styled by severity.
    """
    return Text(severity, style=_SEVERITY_STYLES.get(Severity.parse(severity), ""))


def print_summary_and_report_path(report: AnalysisReport, report_paths: Dict[str, str],
                                  show_top: int = 10, print_full_table: bool = False,
                                  console: Optional[Console] = None):
    """
    Print a compact summary and a colorful table of findings.
    """
    console = console or _console
    findings = report.all_findings()
    console.print("\nAnalysis summary:")
    console.print(f"- Status: {report.status}")
    console.print(f"- Issues: {len(report.issues)}  Optimizations: {len(report.optimizations)}")
    if report.token_usage is not None:
        usage = report.token_usage
        console.print(f"- Tokens: {usage.input_tokens} in / {usage.output_tokens} out "
                      f"(~${usage.estimated_cost:.4f})")
    if report.summary:
        console.print(f"- AI summary: {report.summary}")
    if findings:
        rows = findings_to_table_rows(findings)
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Resource", style="cyan", overflow="fold")
        table.add_column("Issue", style="magenta", overflow="fold")
        table.add_column("Severity", justify="right")
        table.add_column("Category")
        table.add_column("Source")
        for r in (rows if print_full_table else rows[:show_top]):
            table.add_row(r[0], r[1], _severity_text(r[2]), r[3], r[4])
        console.print(table)
        if not print_full_table and len(rows) > show_top:
            console.print(f"... {len(rows) - show_top} more (use --print-table)")
    console.print("\nSaved reports:")
    for kind, path in report_paths.items():
        console.print(f"- {kind.upper()}: {path}")
