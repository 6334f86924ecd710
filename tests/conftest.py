import threading
from typing import Dict, List, Optional, Set, Tuple

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import Stubber

from bucket_ops import DeploymentTarget


class FakePaginator:
    def __init__(self, s3: "FakeS3") -> None:
        self.s3 = s3

    def paginate(self, Bucket: str):
        self.s3.record("list_objects_v2", {"Bucket": Bucket})
        keys = sorted(self.s3.objects(Bucket))
        if not keys:
            yield {"KeyCount": 0}
            return
        size = self.s3.page_size
        for start in range(0, len(keys), size):
            yield {"Contents": [{"Key": key} for key in keys[start:start + size]]}


class FakeS3:
    """In-memory stand-in for the handful of S3 calls a deployment makes."""

    def __init__(self, buckets: Optional[Dict[str, Dict[str, dict]]] = None, page_size: int = 1000) -> None:
        self.buckets: Dict[str, Dict[str, dict]] = buckets or {}
        self.page_size = page_size
        self.calls: List[Tuple[str, dict]] = []
        self.websites: Dict[str, dict] = {}
        self.policies: Dict[str, str] = {}
        self.public_access: Dict[str, dict] = {}
        self.fail_operations: Set[str] = set()
        self.fail_keys: Set[str] = set()
        self.delete_errors: List[dict] = []
        self.on_put = None
        self._lock = threading.Lock()

    def record(self, operation: str, params: dict) -> None:
        with self._lock:
            self.calls.append((operation, params))
        if operation in self.fail_operations:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "Access Denied"}}, operation)

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def calls_to(self, operation: str) -> List[dict]:
        return [params for name, params in self.calls if name == operation]

    def objects(self, bucket: str) -> Dict[str, dict]:
        return self.buckets.get(bucket, {})

    def list_buckets(self):
        self.record("list_buckets", {})
        return {"Buckets": [{"Name": name} for name in self.buckets]}

    def get_paginator(self, operation: str):
        assert operation == "list_objects_v2"
        return FakePaginator(self)

    def create_bucket(self, **params):
        self.record("create_bucket", params)
        self.buckets.setdefault(params["Bucket"], {})
        return {}

    def put_bucket_website(self, **params):
        self.record("put_bucket_website", params)
        self.websites[params["Bucket"]] = params["WebsiteConfiguration"]
        return {}

    def put_public_access_block(self, **params):
        self.record("put_public_access_block", params)
        self.public_access[params["Bucket"]] = params["PublicAccessBlockConfiguration"]
        return {}

    def put_bucket_policy(self, **params):
        self.record("put_bucket_policy", params)
        self.policies[params["Bucket"]] = params["Policy"]
        return {}

    def delete_objects(self, **params):
        self.record("delete_objects", params)
        if self.delete_errors:
            return {"Errors": self.delete_errors}
        bucket = self.buckets[params["Bucket"]]
        with self._lock:
            for obj in params["Delete"]["Objects"]:
                bucket.pop(obj["Key"], None)
        return {}

    def put_object(self, **params):
        self.record("put_object", params)
        if params["Key"] in self.fail_keys:
            raise ClientError({"Error": {"Code": "InternalError", "Message": "We encountered an internal error"}}, "PutObject")
        if self.on_put is not None:
            self.on_put(params)
        with self._lock:
            self.buckets[params["Bucket"]][params["Key"]] = params
        return {"ETag": '"etag"'}


@pytest.fixture
def target():
    return DeploymentTarget(bucket_name="my-site", region="us-east-1", stage="dev")


@pytest.fixture
def fake_s3():
    return FakeS3()


@pytest.fixture
def stubbed_s3():
    client = boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    with Stubber(client) as stubber:
        yield client, stubber
        stubber.assert_no_pending_responses()


@pytest.fixture
def site_dir(tmp_path):
    """A built site: index.html plus assets/app.js."""
    dist = tmp_path / "dist"
    (dist / "assets").mkdir(parents=True)
    (dist / "index.html").write_text("<html><body><div id='app'></div></body></html>")
    (dist / "assets" / "app.js").write_text("console.log('hello');\n" * 50)
    return dist
