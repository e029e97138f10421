# tests/conftest.py
"""
Shared fixtures and fake Bedrock clients.

- Fakes mimic the boto3 client surface the analyzer uses (converse, list_foundation_models).
- Errors are real botocore ClientErrors so throttling detection is exercised as in production.
"""

import json
import threading

import pytest
from botocore.exceptions import ClientError


def client_error(code, status=400, operation="Converse"):
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


def throttling_error():
    return client_error("ThrottlingException", status=429)


def converse_response(text, input_tokens=10, output_tokens=5):
    return {
        "output": {"message": {"role": "assistant", "content": [{"text": text}]}},
        "usage": {"inputTokens": input_tokens, "outputTokens": output_tokens},
        "stopReason": "end_turn",
    }


def findings_payload(resource_id, *issues):
    """
    Build the JSON text a well-behaved model would return.
    Each issue is (issue, severity, category).
    """
    return json.dumps({
        "resource": resource_id,
        "issues": [
            {
                "resource": resource_id,
                "issue": issue,
                "recommendation": f"Fix: {issue}",
                "severity": severity,
                "category": category,
            }
            for issue, severity, category in issues
        ],
    })


class FakeRuntime:
    """
    Stand-in for the bedrock-runtime client.

    script: list of items consumed per call; an Exception is raised, a str is
    returned as the model text. When the script runs out, responder(prompt) is used.
    """

    def __init__(self, script=None, responder=None):
        self.script = list(script or [])
        self.responder = responder
        self.calls = []
        self._lock = threading.Lock()

    def converse(self, **kwargs):
        prompt = kwargs["messages"][0]["content"][0]["text"]
        with self._lock:
            self.calls.append(kwargs)
            item = self.script.pop(0) if self.script else None
        if item is None:
            item = self.responder(prompt) if self.responder else '{"issues": []}'
        if isinstance(item, Exception):
            raise item
        return converse_response(item)


class FakeControl:
    def __init__(self, model_ids=None, error=None):
        self.model_ids = list(model_ids or [])
        self.error = error

    def list_foundation_models(self, **kwargs):
        if self.error is not None:
            raise self.error
        return {"modelSummaries": [{"modelId": m} for m in self.model_ids]}


class RecordingSleep:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def sample_template():
    return {
        "Resources": {
            "UnversionedBucket": {
                "Type": "AWS::S3::Bucket",
                "Properties": {},
                "Metadata": {"aws:cdk:path": "TestStack/UnversionedBucket/Resource"},
            },
            "HighMemoryLambda": {
                "Type": "AWS::Lambda::Function",
                "Properties": {"MemorySize": 2048, "Runtime": "nodejs18.x", "Handler": "index.handler"},
            },
        }
    }
