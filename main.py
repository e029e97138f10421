# main.py
"""
CLI entrypoint for cdk-insights.

- Obtains a CloudFormation template, either by running `cdk synth --json` or from --template.
- Runs the rule pass and, unless --no-ai, the Bedrock pass.
- Writes the JSON report (optionally HTML) and prints a colorful summary table.
- Exit codes: 0 clean, 2 issues found, 1 no usable template.
"""

import argparse
import json
import logging
import os
import shlex
import subprocess
import sys
from typing import List, Optional

import boto3

from config import (
    DEFAULT_AWS_REGION,
    DEFAULT_INDEX_BUCKET,
    DEFAULT_MAX_CONCURRENT_REQUESTS,
    DEFAULT_MODEL_ID,
    DEFAULT_SYNTH_COMMAND,
    EXIT_CLEAN,
    EXIT_ISSUES_FOUND,
    EXIT_SYNTH_FAILURE,
    MAX_RESOURCE_CHARS,
)
from models import AnalysisMode, resources_from_template
from scanner.analysis import create_analyzer, run_analysis
from scanner.bedrock import BedrockClient
from scanner.cache import FindingCache
from scanner.errors import UpstreamSynthFailure
from scanner.rules import RuleGroup
from scanner.store import S3FindingStore
from utils import load_json_file, print_summary_and_report_path, save_report

logger = logging.getLogger("cdk_insights")


def synthesize_template(command: Optional[List[str]] = None, stack: Optional[str] = None) -> dict:
    """
    Run the CDK synth command and parse the template it prints.
    Any failure is an UpstreamSynthFailure.
    """
    command = list(command or DEFAULT_SYNTH_COMMAND)
    if stack:
        command.append(stack)
    logger.info("Running %s", " ".join(command))
    try:
        proc = subprocess.run(command, capture_output=True, text=True, check=True)
    except FileNotFoundError as e:
        raise UpstreamSynthFailure(f"Synth command not found: {command[0]}") from e
    except subprocess.CalledProcessError as e:
        raise UpstreamSynthFailure(
            f"CDK synth failed (exit {e.returncode}). Try running `cdk synth` manually.\n{e.stderr or ''}"
        ) from e
    try:
        template = json.loads(proc.stdout)
    except ValueError as e:
        raise UpstreamSynthFailure(f"CDK synth output is not JSON: {e}") from e
    return validate_template(template)


def load_template(path: str) -> dict:
    try:
        return validate_template(load_json_file(path))
    except (OSError, ValueError) as e:
        raise UpstreamSynthFailure(str(e)) from e


def validate_template(template) -> dict:
    """
    Reject templates whose Resources section or resource entries cannot be analyzed.
    """
    if not isinstance(template, dict) or not isinstance(template.get("Resources", {}), dict):
        raise UpstreamSynthFailure("Template has no usable 'Resources' section")
    try:
        resources_from_template(template)
    except ValueError as e:
        raise UpstreamSynthFailure(f"Template has an unusable resource: {e}") from e
    return template


def _csv(value: Optional[str]) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def run(args) -> int:
    """
    Execute one analysis run and return the process exit code.
    """
    try:
        if args.template:
            logger.info("Reading template from %s", args.template)
            template = load_template(args.template)
        else:
            template = synthesize_template(shlex.split(args.synth_command), args.stack)
    except UpstreamSynthFailure as e:
        logger.error("%s", e)
        return EXIT_SYNTH_FAILURE

    analyzer = None
    index = None
    if not args.no_ai:
        # Resolve region: CLI -> env -> config default
        region = args.region or os.environ.get("AWS_REGION") or DEFAULT_AWS_REGION
        # Credentials are expected from the environment (e.g., aws-vault exec ... -- cdk-insights)
        session = boto3.Session(profile_name=args.profile, region_name=region) if args.profile \
            else boto3.Session(region_name=region)
        bucket = args.index_bucket or os.environ.get("CDK_INSIGHTS_INDEX_BUCKET") or DEFAULT_INDEX_BUCKET
        if bucket:
            index = S3FindingStore(bucket, session=session)
        analyzer = create_analyzer(
            BedrockClient(session),
            preferred_model=args.model or os.environ.get("BEDROCK_MODEL_ID") or DEFAULT_MODEL_ID,
            cache=FindingCache(store=index),
            modes=args.ai_insights,
            max_chars=args.max_resource_chars,
            max_workers=args.max_concurrency,
        )

    report = run_analysis(
        template,
        groups=args.selected_services,
        analyzer=analyzer,
        summarize=args.summary,
        index=index,
    )
    report_paths = save_report(report, out_dir=args.report_dir, write_html=args.html)
    print_summary_and_report_path(report, report_paths, print_full_table=args.print_table)
    return EXIT_CLEAN if report.passed else EXIT_ISSUES_FOUND


def parse_args(argv: Optional[List[str]] = None):
    p = argparse.ArgumentParser(
        description="AI-assisted security, cost and compliance review of AWS CDK stacks."
    )
    p.add_argument(
        "--template",
        help="Path to a synthesized CloudFormation template (skips running cdk synth)",
    )
    p.add_argument(
        "--synth-command",
        default=" ".join(DEFAULT_SYNTH_COMMAND),
        help="Command that prints the synthesized template (default: %(default)s)",
    )
    p.add_argument(
        "--stack",
        help="Stack name to synthesize when the app defines several",
    )
    p.add_argument(
        "--selected-services",
        help="Comma-separated rule groups / services to analyze (e.g., s3,lambda). Default: all",
    )
    p.add_argument(
        "--ai-insights",
        help="Comma-separated AI modes: security,cost,compliance,risk. Default: all",
    )
    p.add_argument(
        "--no-ai",
        action="store_true",
        help="Run the rule pass only",
    )
    p.add_argument(
        "--model",
        help="Preferred Bedrock model id (env BEDROCK_MODEL_ID); falls back to known-good models",
    )
    p.add_argument(
        "--profile",
        help="AWS profile name (optional; not needed when credentials come from AWS Vault)",
    )
    p.add_argument(
        "--region",
        help="AWS region (optional)",
    )
    p.add_argument(
        "--index-bucket",
        help="S3 bucket for the persistent findings index (env CDK_INSIGHTS_INDEX_BUCKET)",
    )
    p.add_argument(
        "--max-concurrency",
        type=int,
        default=DEFAULT_MAX_CONCURRENT_REQUESTS,
        help="Concurrent Bedrock requests (default: %(default)s)",
    )
    p.add_argument(
        "--max-resource-chars",
        type=int,
        default=MAX_RESOURCE_CHARS,
        help="Resource size budget per prompt (default: %(default)s)",
    )
    p.add_argument(
        "--summary",
        action="store_true",
        help="Ask the model for a run summary",
    )
    p.add_argument(
        "--report-dir",
        default="reports",
        help="Directory to save reports (default: reports)",
    )
    p.add_argument(
        "--html",
        action="store_true",
        help="Also write an HTML rendering of the report",
    )
    p.add_argument(
        "--print-table",
        action="store_true",
        help="Print full findings table to stdout",
    )
    p.add_argument(
        "--verbose",
        action="store_true",
        help="Debug logging",
    )
    args = p.parse_args(argv)

    try:
        args.selected_services = [RuleGroup.parse(s) for s in _csv(args.selected_services)] or None
        args.ai_insights = AnalysisMode.parse_list(_csv(args.ai_insights))
    except ValueError as e:
        p.error(str(e))
    return args


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    sys.exit(run(args))


if __name__ == "__main__":
    main()
