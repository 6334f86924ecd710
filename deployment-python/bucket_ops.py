"""
===========================================
 S3 Bucket Inventory, Provisioning & Purge
===========================================

Everything the deployment does to the *bucket itself* lives here:

1. Find out whether the website bucket already exists and what is inside it.
2. Create the bucket if it is missing.
3. Turn the bucket into a public website (index/error documents, public
   access switches, public-read policy). These calls overwrite whatever
   configuration was there before, so running them twice is harmless.
4. Delete every object currently in the bucket so the new upload starts
   from a clean slate.

Each step catches the boto3 errors it can hit, logs them with the bucket
name, and reports failure through its return value so the caller can stop
the deployment at the first broken step.
"""

import json
import logging
from typing import Dict, List, NamedTuple, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

# --- Constants ---

INDEX_DOCUMENT: str = "index.html"
# Single-page apps route on the client, so every missing key falls back to the app shell.
ERROR_DOCUMENT: str = "index.html"
# S3 accepts at most 1000 keys per DeleteObjects request.
DELETE_BATCH_SIZE: int = 1000
# Regions whose website endpoint is 's3-website-<region>' rather than 's3-website.<region>'.
DASH_WEBSITE_REGIONS: List[str] = [
    "us-east-1",
    "us-west-1",
    "us-west-2",
    "ap-southeast-1",
    "ap-southeast-2",
    "ap-northeast-1",
    "eu-west-1",
    "sa-east-1",
    "us-gov-west-1",
]


class DeploymentTarget(NamedTuple):
    """Where a deployment goes: bucket name, AWS region and deployment stage."""

    bucket_name: str
    region: str
    stage: str


class BucketState(NamedTuple):
    """What the bucket looked like when the run started."""

    exists: bool
    object_keys: List[str]


def website_endpoint(target: DeploymentTarget) -> str:
    """
    Returns the public S3 website address of the target bucket.

    The oldest regions use a dash before the region name
    ('s3-website-us-east-1'); every other region uses a dot
    ('s3-website.eu-central-1').
    """
    separator = "-" if target.region in DASH_WEBSITE_REGIONS else "."
    return f"http://{target.bucket_name}.s3-website{separator}{target.region}.amazonaws.com"


def public_read_policy(bucket_name: str) -> Dict:
    """
    Builds the bucket policy document that makes every object publicly readable.

    Simple Explanation:
    The rule says: "Allow *anyone* ('Principal': '*') to *read*
    ('Action': 's3:GetObject') any file ('Resource': 'arn:aws:s3:::bucket_name/*')
    inside this bucket." Nothing else is granted.

    Args:
        bucket_name (str): The name of the S3 bucket.

    Returns:
        Dict: The policy document, ready for ``json.dumps``.
    """
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "PublicReadGetObject",
                "Effect": "Allow",
                "Principal": "*",
                "Action": "s3:GetObject",
                "Resource": f"arn:aws:s3:::{bucket_name}/*",
            }
        ],
    }


# --- Inventory ---

def inspect_bucket(s3_client: boto3.client, target: DeploymentTarget) -> Optional[BucketState]:
    """
    Checks whether the target bucket exists and lists every object key in it.

    Simple Explanation:
    Before touching anything we take a fresh look at the bucket. First we ask
    AWS for the list of all buckets our credentials can see and look for ours
    by name. If it is there, we walk through its contents page by page (AWS
    hands back at most 1000 keys per page) and collect every key.

    Args:
        s3_client (boto3.client): An initialized S3 client.
        target (DeploymentTarget): The deployment target.

    Returns:
        Optional[BucketState]: The bucket's current state, or None if AWS could
                               not be queried. None means the remote state is
                               unknown and the deployment must not continue.
    """
    bucket_name = target.bucket_name
    try:
        response = s3_client.list_buckets()
        exists = any(bucket.get("Name") == bucket_name for bucket in response.get("Buckets", []))
        if not exists:
            logger.info(f"Bucket '{bucket_name}' does not exist yet.")
            return BucketState(exists=False, object_keys=[])

        logger.info(f"Bucket '{bucket_name}' already exists. Listing objects...")
        object_keys: List[str] = []
        paginator = s3_client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=bucket_name):
            for obj in page.get("Contents", []):
                object_keys.append(obj["Key"])

        logger.info(f"Found {len(object_keys)} objects in bucket '{bucket_name}'.")
        return BucketState(exists=True, object_keys=object_keys)
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Failed to inspect bucket '{bucket_name}'. Error: {e}")
        return None


# --- Provisioning ---

def create_bucket(s3_client: boto3.client, target: DeploymentTarget) -> bool:
    """
    Creates a new S3 bucket in the target region.

    Simple Explanation:
    'us-east-1' is AWS's default region and must be created *without* a
    location constraint; every other region needs one. If AWS tells us the
    bucket is already ours, that is as good as creating it.

    Args:
        s3_client (boto3.client): An initialized S3 client.
        target (DeploymentTarget): The deployment target.

    Returns:
        bool: True if the bucket now exists under your ownership, False otherwise.
    """
    bucket_name = target.bucket_name
    logger.info(f"Creating bucket '{bucket_name}' in region {target.region}...")
    try:
        if target.region == "us-east-1":
            s3_client.create_bucket(Bucket=bucket_name)
        else:
            s3_client.create_bucket(
                Bucket=bucket_name,
                CreateBucketConfiguration={"LocationConstraint": target.region},
            )
        logger.info(f"Successfully created S3 bucket: {bucket_name} in region {target.region}")
        return True
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code")
        if error_code == "BucketAlreadyOwnedByYou":
            logger.info(f"Bucket '{bucket_name}' already exists and is owned by you. Proceeding.")
            return True
        if error_code == "BucketAlreadyExists":
            logger.error(f"Bucket name '{bucket_name}' is already taken by someone else.")
        else:
            logger.error(f"Failed to create bucket '{bucket_name}'. Error: {e}")
        return False
    except BotoCoreError as e:
        logger.error(f"Failed to create bucket '{bucket_name}'. Error: {e}")
        return False


def ensure_bucket(s3_client: boto3.client, target: DeploymentTarget, state: BucketState) -> bool:
    """Creates the bucket only when the inventory said it was missing."""
    if state.exists:
        logger.debug(f"Bucket '{target.bucket_name}' exists, skipping creation.")
        return True
    return create_bucket(s3_client, target)


def configure_website(s3_client: boto3.client, target: DeploymentTarget) -> bool:
    """
    Configures the S3 bucket for static website hosting.

    Both the index and the error document are ``index.html``: any path the
    bucket does not know is answered by the app shell, which then routes on
    the client side. The call replaces any earlier website configuration.

    Args:
        s3_client (boto3.client): An initialized S3 client.
        target (DeploymentTarget): The deployment target.

    Returns:
        bool: True if website configuration was successful, False otherwise.
    """
    bucket_name = target.bucket_name
    logger.info(f"Configuring website bucket '{bucket_name}'...")
    try:
        s3_client.put_bucket_website(
            Bucket=bucket_name,
            WebsiteConfiguration={
                "IndexDocument": {"Suffix": INDEX_DOCUMENT},
                "ErrorDocument": {"Key": ERROR_DOCUMENT},
            },
        )
        logger.info(f"Successfully configured bucket '{bucket_name}' for static website hosting.")
        return True
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Failed to configure website hosting for bucket '{bucket_name}'. Error: {e}")
        return False


def disable_block_public_access(s3_client: boto3.client, target: DeploymentTarget) -> bool:
    """
    Disables the S3 Block Public Access settings for the target bucket.

    Simple Explanation:
    New buckets refuse public policies by default. We flip the four "block
    public access" switches off for this one bucket so the public-read policy
    set next is actually accepted.

    Args:
        s3_client (boto3.client): An initialized S3 client.
        target (DeploymentTarget): The deployment target.

    Returns:
        bool: True if the settings were successfully disabled, False otherwise.
    """
    bucket_name = target.bucket_name
    try:
        s3_client.put_public_access_block(
            Bucket=bucket_name,
            PublicAccessBlockConfiguration={
                "BlockPublicAcls": False,
                "IgnorePublicAcls": False,
                "BlockPublicPolicy": False,
                "RestrictPublicBuckets": False,
            },
        )
        logger.info(f"Disabled Block Public Access settings for bucket: {bucket_name}")
        return True
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Failed to disable Block Public Access for bucket '{bucket_name}'. Error: {e}")
        return False


def set_bucket_policy(s3_client: boto3.client, target: DeploymentTarget) -> bool:
    """
    Applies the public-read bucket policy, replacing any existing policy.

    Args:
        s3_client (boto3.client): An initialized S3 client.
        target (DeploymentTarget): The deployment target.

    Returns:
        bool: True if the policy was set successfully, False otherwise.
    """
    bucket_name = target.bucket_name
    logger.info(f"Configuring policy for bucket '{bucket_name}'...")
    try:
        policy_string: str = json.dumps(public_read_policy(bucket_name))
        s3_client.put_bucket_policy(Bucket=bucket_name, Policy=policy_string)
        logger.info(f"Successfully applied public read policy to bucket: {bucket_name}")
        return True
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Failed to set bucket policy for '{bucket_name}'. Error: {e}")
        return False


# --- Purge ---

def purge_bucket(s3_client: boto3.client, target: DeploymentTarget, state: BucketState) -> bool:
    """
    Deletes every object the inventory found in the bucket.

    Simple Explanation:
    The deployment replaces the whole site, so the old files go first. All
    keys are sent to S3 in one DeleteObjects request (S3 caps a request at
    1000 keys, so very large sites take a few requests). If the bucket is new
    or already empty, nothing is sent at all.

    Args:
        s3_client (boto3.client): An initialized S3 client.
        target (DeploymentTarget): The deployment target.
        state (BucketState): The state returned by ``inspect_bucket``.

    Returns:
        bool: True if every listed object was deleted (or there was nothing to
              delete), False otherwise.
    """
    bucket_name = target.bucket_name
    if not state.exists or not state.object_keys:
        logger.info(f"Nothing to delete in bucket '{bucket_name}'.")
        return True

    logger.info(f"Deleting all {len(state.object_keys)} objects from bucket '{bucket_name}'...")
    keys = state.object_keys
    try:
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = [{"Key": key} for key in keys[start:start + DELETE_BATCH_SIZE]]
            delete_response = s3_client.delete_objects(
                Bucket=bucket_name, Delete={"Objects": batch, "Quiet": True}
            )
            if delete_response.get("Errors"):
                logger.error(f"Errors encountered deleting objects: {delete_response['Errors']}")
                return False
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Error emptying bucket '{bucket_name}': {e}")
        return False

    logger.info(f"Successfully deleted {len(keys)} objects from bucket '{bucket_name}'.")
    return True
