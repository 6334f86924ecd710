"""
=========================================
 AWS S3 Static Website Deployment Script
=========================================

Project Explanation:
--------------------
Your build tool has produced a folder full of website files (HTML, CSS,
JavaScript, images). This script puts exactly that folder online as an S3
static website, and every run leaves the bucket as a *mirror* of the folder:
nothing old left behind, nothing new missing.

How does S3 host a website?
---------------------------
Think of an S3 'bucket' as an online folder. We tell S3 that this folder is
a website by setting:
- An 'index document' (`index.html`): the page shown for the site's root address.
- An 'error document' (also `index.html`): single-page apps do their own
  routing in the browser, so any unknown address is answered by the app itself.
Then we attach a 'policy' saying "anyone on the internet may *read* the files
in this bucket".

What this script does:
----------------------
1. Checks your settings (build folder, bucket name) before talking to AWS.
2. Looks at the bucket: does it exist, and which files are in it right now?
3. Creates the bucket if it does not exist.
4. Configures website hosting, opens public access and sets the public-read
   policy. These are re-applied on every run.
5. Deletes every file currently in the bucket.
6. Uploads every file from the build folder (optionally gzip-compressed),
   several at a time.
7. Prints a summary with the website address, and exits with an error code
   if anything failed.

IMPORTANT: between step 5 and the end of step 6 the site is incomplete. If
an upload fails, the bucket is left with the old files gone and only part of
the new ones present. Re-run the deployment to repair it. Never run two
deployments against the same bucket at the same time.

Requirements:
-------------
- Python 3 installed.
- `boto3` library installed (`pip install boto3`).
- AWS credentials configured (`aws configure`, environment variables, or a
  named profile via `--profile`) with permission to manage the bucket.
"""

import argparse
import logging
import os
import signal
import sys
import threading
from typing import Dict, List, Optional, Union

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError

from bucket_ops import (
    DeploymentTarget,
    configure_website,
    disable_block_public_access,
    ensure_bucket,
    inspect_bucket,
    purge_bucket,
    set_bucket_policy,
    website_endpoint,
)
from upload_ops import DEFAULT_MAX_WORKERS, upload_directory

# --- Configuration ---

# Configure logging to show informational messages
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

# --- Constants ---

# Where the build tool leaves the finished site, relative to the working directory.
DEFAULT_DIST_FOLDER: str = ".spa"
DEFAULT_REGION: str = "us-east-1"
DEFAULT_STAGE: str = "dev"
RETRY_MAX_ATTEMPTS: int = 10

BucketSetting = Union[str, Dict[str, str], None]


# --- Settings ---

def parse_bucket_setting(values: Optional[List[str]]) -> BucketSetting:
    """
    Turns the ``--bucket`` values into either one bucket name or a per-stage mapping.

    ``--bucket my-site`` gives ``"my-site"``.
    ``--bucket dev=my-site-dev --bucket prod=my-site`` (or the same pairs
    comma-separated in one value) gives ``{"dev": "my-site-dev", "prod": "my-site"}``.
    """
    if not values:
        return None

    items: List[str] = []
    for value in values:
        items.extend(part.strip() for part in value.split(",") if part.strip())

    if len(items) == 1 and "=" not in items[0]:
        return items[0]

    mapping: Dict[str, str] = {}
    for item in items:
        stage, sep, bucket_name = item.partition("=")
        if not sep:
            raise ValueError(f"Cannot mix a plain bucket name with per-stage buckets: '{item}'")
        mapping[stage.strip()] = bucket_name.strip()
    return mapping


def resolve_bucket_name(setting: BucketSetting, stage: str) -> Optional[str]:
    """
    Picks the bucket name for the stage being deployed.

    Args:
        setting (BucketSetting): A bucket name, a mapping of stage to bucket
                                 name, or None.
        stage (str): The deployment stage (e.g. 'dev', 'prod').

    Returns:
        Optional[str]: The bucket name, or None if the setting has none for this stage.
    """
    if isinstance(setting, str):
        return setting.strip() or None
    if isinstance(setting, dict):
        return (setting.get(stage) or "").strip() or None
    return None


def build_target(setting: BucketSetting, region: str, stage: str) -> Optional[DeploymentTarget]:
    bucket_name = resolve_bucket_name(setting, stage)
    if not bucket_name:
        logger.error(f"Could not find bucket name for stage '{stage}'.")
        return None
    return DeploymentTarget(bucket_name=bucket_name, region=region, stage=stage)


def validate_inputs(target: DeploymentTarget, dist_folder: str) -> bool:
    """Catches configuration mistakes before any request is sent to AWS."""
    if not target.bucket_name:
        logger.error("No bucket name provided. Deployment cannot proceed.")
        return False
    if not os.path.isdir(dist_folder):
        logger.error(f"Could not find build folder '{dist_folder}'. Deployment cannot proceed.")
        return False
    return True


def create_s3_client(region: str, profile: Optional[str] = None, max_workers: int = DEFAULT_MAX_WORKERS):
    """
    Creates the S3 client used for the whole run.

    Throttled or flaky requests are retried by botocore ('standard' retry
    mode). The connection pool is sized so every upload worker gets its own
    connection.
    """
    session = boto3.Session(profile_name=profile) if profile else boto3.Session()
    client_config = Config(
        retries={"max_attempts": RETRY_MAX_ATTEMPTS, "mode": "standard"},
        max_pool_connections=max(10, max_workers),
    )
    return session.client("s3", region_name=region, config=client_config)


# --- Deployment ---

def deploy_site(
    s3_client: boto3.client,
    target: DeploymentTarget,
    dist_folder: str,
    gzip_enabled: bool = False,
    max_workers: int = DEFAULT_MAX_WORKERS,
    cancel_event: Optional[threading.Event] = None,
) -> bool:
    """
    Runs one deployment: makes the bucket an exact, public, website-enabled
    mirror of ``dist_folder``.

    Simple Explanation:
    This is the conductor. It runs the steps in a fixed order and stops at
    the first one that fails:
    1. Check the settings (no AWS calls yet).
    2. Look at the bucket (`inspect_bucket`).
    3. Create it if missing (`ensure_bucket`).
    4. Website hosting, public access, public-read policy.
    5. Delete the old files (`purge_bucket`).
    6. Upload the new files (`upload_directory`).

    Args:
        s3_client (boto3.client): An initialized S3 client.
        target (DeploymentTarget): Bucket, region and stage for this run.
        dist_folder (str): The folder holding the built site.
        gzip_enabled (bool): Whether to gzip every file before upload.
        max_workers (int): Maximum number of uploads in flight at once.
        cancel_event (Optional[threading.Event]): When set, no new uploads start.

    Returns:
        bool: True if the bucket now mirrors the folder, False otherwise.
    """
    if not validate_inputs(target, dist_folder):
        return False

    logger.info(f"Deploying '{dist_folder}' to bucket '{target.bucket_name}' (stage: {target.stage}, region: {target.region})")

    state = inspect_bucket(s3_client, target)
    if state is None:
        logger.error("Could not determine the bucket's current state. Deployment cannot proceed.")
        return False

    if not ensure_bucket(s3_client, target, state):
        logger.error("Bucket creation failed. Deployment cannot proceed.")
        return False

    if not configure_website(s3_client, target):
        logger.error("Failed to configure bucket for website hosting. Re-run the deployment to finish configuring it.")
        return False

    if not disable_block_public_access(s3_client, target):
        logger.error("Failed to modify Block Public Access settings. Re-run the deployment to finish configuring it.")
        return False

    if not set_bucket_policy(s3_client, target):
        logger.error("Failed to set bucket policy. Re-run the deployment to finish configuring it.")
        return False

    # Past this point the live site is gone until the upload finishes.
    if cancel_event is not None and cancel_event.is_set():
        logger.warning(f"Deployment cancelled before deleting old objects. The previous site in '{target.bucket_name}' is still live.")
        return False

    if not purge_bucket(s3_client, target, state):
        logger.error("Failed to delete old objects. The bucket may still hold part of the previous site.")
        return False

    summary = upload_directory(
        s3_client,
        target,
        dist_folder,
        gzip_enabled=gzip_enabled,
        max_workers=max_workers,
        cancel_event=cancel_event,
    )
    if not summary.ok:
        logger.error(
            f"Bucket '{target.bucket_name}' is in a mixed state: the previous site was deleted "
            f"but only {len(summary.uploaded)} new files were uploaded. Re-run the deployment."
        )
        return False

    logger.info(f"Bucket '{target.bucket_name}' now mirrors '{dist_folder}'.")
    return True


# --- Command line ---

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Deploy a built static site to an S3 bucket configured for website hosting."
    )
    parser.add_argument(
        "--dist-folder",
        default=os.environ.get("SITE_DEPLOY_DIST", DEFAULT_DIST_FOLDER),
        help="Folder holding the built site (env: SITE_DEPLOY_DIST, default: .spa)",
    )
    parser.add_argument(
        "--bucket",
        action="append",
        help="Bucket name, or STAGE=BUCKET pairs to pick a bucket per stage (env: SITE_DEPLOY_BUCKET)",
    )
    parser.add_argument(
        "--region",
        default=os.environ.get("AWS_REGION", DEFAULT_REGION),
        help="AWS region of the bucket (env: AWS_REGION, default: us-east-1)",
    )
    parser.add_argument(
        "--stage",
        default=os.environ.get("SITE_DEPLOY_STAGE", DEFAULT_STAGE),
        help="Deployment stage (env: SITE_DEPLOY_STAGE, default: dev)",
    )
    parser.add_argument("--profile", help="AWS CLI profile name")
    parser.add_argument("--gzip", action="store_true", help="Gzip files before uploading")
    parser.add_argument(
        "--max-workers",
        type=int,
        default=os.environ.get("SITE_DEPLOY_MAX_WORKERS", str(DEFAULT_MAX_WORKERS)),
        help="Maximum concurrent uploads (env: SITE_DEPLOY_MAX_WORKERS)",
    )
    parser.add_argument("--verbose", action="store_true", help="Show debug logging")
    args = parser.parse_args(argv)

    if not args.bucket and os.environ.get("SITE_DEPLOY_BUCKET"):
        args.bucket = [os.environ["SITE_DEPLOY_BUCKET"]]
    return args


def main(argv: Optional[List[str]] = None) -> None:
    """
    Main function to orchestrate the deployment process.

    Reads the settings, builds the S3 client, runs ``deploy_site`` and prints
    a summary. Ctrl+C during the upload stops new uploads and lets the ones
    already running finish. Exits with status 1 if the deployment failed.
    """
    args = parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    logger.info("=================================================")
    logger.info(" Starting AWS S3 Static Website Deployment ")
    logger.info("=================================================")

    try:
        bucket_setting = parse_bucket_setting(args.bucket)
    except ValueError as e:
        logger.error(f"Invalid bucket setting. {e}")
        sys.exit(1)

    target = build_target(bucket_setting, args.region, args.stage)
    if target is None:
        sys.exit(1)

    try:
        s3_client = create_s3_client(args.region, args.profile, args.max_workers)
    except BotoCoreError as e:
        logger.error(f"Failed to initialize AWS client. Check credentials and profile. Error: {e}")
        sys.exit(1)

    cancel_event = threading.Event()

    def _request_cancel(signum, frame):
        logger.warning("Interrupt received. Finishing uploads already in progress...")
        cancel_event.set()

    previous_handler = signal.signal(signal.SIGINT, _request_cancel)
    try:
        succeeded = deploy_site(
            s3_client,
            target,
            args.dist_folder,
            gzip_enabled=args.gzip,
            max_workers=args.max_workers,
            cancel_event=cancel_event,
        )
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    # --- Deployment Summary ---
    print("\n" + "=" * 60)
    print("          DEPLOYMENT SUMMARY")
    print("=" * 60)
    print(f" S3 Bucket Name:        {target.bucket_name}")
    print(f" AWS Region:            {target.region}")
    print(f" Stage:                 {target.stage}")
    print(f" S3 Website Endpoint:   {website_endpoint(target)}")
    print(f" Status:                {'SUCCEEDED' if succeeded else 'FAILED'}")
    print("=" * 60 + "\n")

    if not succeeded:
        logger.error("Deployment finished with errors. Please review logs.")
        sys.exit(1)
    logger.info("Deployment script finished.")


# --- Script Entry Point ---

if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("Aborted by user. Exiting.")
