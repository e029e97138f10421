"""
Central configuration and tunable constants.

- Region, model and index bucket can be overridden by CLI args or environment variables.
- Retry, concurrency and generation limits for the Bedrock pass are centralized for easy tuning.
"""

# AWS Vault model:
# - We do NOT use a default profile (AWS Vault injects credentials)
# - We DO need a default region for boto3.Session(region_name=...)
DEFAULT_AWS_REGION = "us-east-1"

# Synth step
DEFAULT_SYNTH_COMMAND = ["cdk", "synth", "--json"]
DEFAULT_REPORT_FILE = "cdk-insights.json"

# Bedrock model selection, first available wins
DEFAULT_MODEL_ID = None
PREFERRED_MODELS = [
    "amazon.nova-pro-v1:0",
    "anthropic.claude-v2",
    "anthropic.claude-instant-v1",
    "amazon.titan-text-lite-v1",
    "amazon.titan-text-express-v1",
    "amazon.titan-text-g1-express",
]

# Generation parameters (low temperature keeps the JSON shape stable)
MAX_OUTPUT_TOKENS = 1200
TEMPERATURE = 0.3
TOP_P = 0.8

# Throttling backoff: BASE_DELAY_SECONDS, doubled per attempt
MAX_ATTEMPTS = 5
BASE_DELAY_SECONDS = 2.0

# Concurrent in-flight Bedrock requests
DEFAULT_MAX_CONCURRENT_REQUESTS = 2
MAX_CONCURRENT_REQUESTS_CEILING = 10

# Serialized resource budget handed to the model
MAX_RESOURCE_CHARS = 4000
TRUNCATION_MARKER = "\n... (truncated)"

# USD per 1000 tokens
INPUT_COST_PER_1000 = 0.00163
OUTPUT_COST_PER_1000 = 0.00551

# Findings index (S3 backed)
DEFAULT_INDEX_BUCKET = None
INDEX_FINDINGS_PREFIX = "findings/"
INDEX_RESOURCES_PREFIX = "index/"
DEFAULT_SEARCH_LIMIT = 5

# Exit codes
EXIT_CLEAN = 0
EXIT_SYNTH_FAILURE = 1
EXIT_ISSUES_FOUND = 2
