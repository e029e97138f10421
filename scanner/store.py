# scanner/store.py
"""
S3-backed findings index.

- put/get: key-value access used by FindingCache for cross-run reuse of AI findings.
- store/bulk_index/search: the findings index, with resource ids anonymized before upload.

Layout in the bucket:
  findings/<cache key>.json          list of finding dicts
  index/<sha256(resource id)>.json   list of anonymized finding records
"""

import hashlib
import json
import logging
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from config import DEFAULT_SEARCH_LIMIT, INDEX_FINDINGS_PREFIX, INDEX_RESOURCES_PREFIX
from models import Finding

logger = logging.getLogger("cdk_insights.index")

MISSING_KEY_CODES = ("NoSuchKey", "404", "NotFound")


def anonymize_resource_id(resource_id: str) -> str:
    return hashlib.sha256(resource_id.encode("utf-8")).hexdigest()


class S3FindingStore:
    """
    Findings index in a single S3 bucket.
    Caller should handle ClientError on store/search if credentials/permissions are missing.
    """

    def __init__(self, bucket: str, session=None, client=None):
        if client is None and session is None:
            raise ValueError("S3FindingStore needs a boto3 Session or an S3 client")
        self.bucket = bucket
        self._s3 = client or session.client("s3")

    # --- key-value access (cache backing) ---

    def _read_json(self, key: str) -> Optional[Any]:
        try:
            resp = self._s3.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in MISSING_KEY_CODES:
                return None
            raise
        return json.loads(resp["Body"].read().decode("utf-8"))

    def _write_json(self, key: str, payload: Any) -> None:
        self._s3.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=json.dumps(payload, indent=2).encode("utf-8"),
            ContentType="application/json",
        )

    def get(self, key: str) -> Optional[List[Finding]]:
        """
        Cached findings for key, or None when absent or unreadable.
        """
        try:
            data = self._read_json(f"{INDEX_FINDINGS_PREFIX}{key}.json")
            if data is None:
                return None
            return [Finding.from_dict(item) for item in data]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Ignoring unreadable findings entry %s: %s", key, e)
            return None

    def put(self, key: str, findings: List[Finding]) -> None:
        self._write_json(f"{INDEX_FINDINGS_PREFIX}{key}.json", [f.to_dict() for f in findings])

    # --- findings index ---

    def store(self, resource_id: str, findings: List[Finding]) -> bool:
        """
        Index the findings of one resource under its anonymized id (replaces earlier records).
        """
        anon = anonymize_resource_id(resource_id)
        records = []
        for f in findings:
            record = f.to_dict()
            record["resource"] = anon
            record.pop("metadata", None)
            records.append(record)
        self._write_json(f"{INDEX_RESOURCES_PREFIX}{anon}.json", records)
        logger.debug("Indexed %d finding(s) for %s", len(records), anon)
        return True

    def bulk_index(self, findings: List[Finding]) -> bool:
        grouped: Dict[str, List[Finding]] = {}
        for f in findings:
            grouped.setdefault(f.resource, []).append(f)
        for resource_id, group in grouped.items():
            self.store(resource_id, group)
        logger.info("Indexed findings for %d resource(s) in s3://%s", len(grouped), self.bucket)
        return True

    def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[Finding]:
        """
        Case-insensitive substring match over indexed issues and recommendations.
        """
        needle = query.strip().lower()
        matches: List[Finding] = []
        paginator = self._s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=INDEX_RESOURCES_PREFIX):
            for obj in page.get("Contents", []):
                for record in self._read_json(obj["Key"]) or []:
                    text = f"{record.get('issue', '')} {record.get('recommendation', '')}".lower()
                    if needle in text:
                        matches.append(Finding.from_dict(record))
                        if len(matches) >= limit:
                            return matches
        return matches
