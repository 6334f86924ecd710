"""
================================
 Website File Walk & S3 Upload
================================

How do the files get from your computer into the bucket?
--------------------------------------------------------
1. We walk through the build folder (and every sub-folder inside it) one
   entry at a time. Nothing is collected up front, so even a huge site only
   keeps a handful of files in memory.
2. For every file we work out what kind of file it is ('Content-Type'), so
   browsers know whether to render it as a page, run it as a script, or show
   it as an image.
3. If compression is switched on, the file is gzipped before it leaves your
   computer and tagged with 'Content-Encoding: gzip' so browsers unpack it.
4. The file is stored in the bucket under its path relative to the build
   folder, always with forward slashes ('assets/app.js'), even on Windows.

Uploads run a few at a time in a thread pool. One failed file does not stop
the others; every failure is collected and reported at the end.
"""

import gzip
import logging
import mimetypes
import os
import threading
import zlib
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from bucket_ops import DeploymentTarget

logger = logging.getLogger(__name__)

# --- Constants ---

DEFAULT_CONTENT_TYPE: str = "application/octet-stream"
DEFAULT_MAX_WORKERS: int = 8
GZIP_ENCODING: str = "gzip"

# Core web types are pinned so uploads do not depend on the host's mime.types file.
CONTENT_TYPES: Dict[str, str] = {
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".mjs": "application/javascript",
    ".json": "application/json",
    ".map": "application/json",
    ".txt": "text/plain",
    ".xml": "application/xml",
    ".svg": "image/svg+xml",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".ico": "image/x-icon",
    ".webp": "image/webp",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".wasm": "application/wasm",
}

# Types browsers should re-validate often so a new deployment shows up quickly.
SHORT_CACHE_TYPES: List[str] = ["text/html", "text/css", "application/javascript"]
SHORT_CACHE_CONTROL: str = "max-age=3600"


class LocalAsset(NamedTuple):
    absolute_path: str
    relative_key: str
    is_directory: bool


class UploadDescriptor(NamedTuple):
    key: str
    body: bytes
    content_type: str
    content_encoding: Optional[str] = None
    cache_control: Optional[str] = None


class UploadSummary:
    """Collects the outcome of every file upload in one deployment run."""

    def __init__(self) -> None:
        self.uploaded: List[str] = []
        self.failed: List[Tuple[str, str]] = []
        self.skipped: List[str] = []
        self.cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.cancelled


# --- Local tree ---

def normalize_key(relative_path: str) -> str:
    """
    Turns a relative file path into an S3 object key.

    Windows paths use backslashes ('assets\\app.js'); S3 keys always use
    forward slashes ('assets/app.js'). A leading slash would create an empty
    top-level "folder" in the bucket, so it is dropped.

    Args:
        relative_path (str): Path of the file relative to the build folder.

    Returns:
        str: The object key.
    """
    return relative_path.replace("\\", "/").lstrip("/")


def walk_local_tree(root: str) -> Iterator[LocalAsset]:
    """
    Walks the build folder depth-first, yielding one LocalAsset per entry.

    Simple Explanation:
    This is a robot that opens the build folder, looks at every entry, and
    hands each one back as soon as it sees it. Sub-folders are handed back
    too (marked ``is_directory=True``) and then the robot climbs inside them
    before moving on. Every call starts a brand new walk.

    Args:
        root (str): The build folder to walk.

    Yields:
        LocalAsset: Each file and sub-folder under ``root``.
    """
    root_abs: str = os.path.abspath(root)

    def _walk(directory: str) -> Iterator[LocalAsset]:
        with os.scandir(directory) as it:
            # Sorted for readable logs; callers must not rely on order.
            entries = sorted(it, key=lambda e: e.name)
        for entry in entries:
            relative_key = normalize_key(os.path.relpath(entry.path, root_abs))
            if entry.is_dir():
                yield LocalAsset(entry.path, relative_key, True)
                yield from _walk(entry.path)
            elif entry.is_file():
                yield LocalAsset(entry.path, relative_key, False)

    yield from _walk(root_abs)


# --- Content metadata ---

def guess_content_type(path: str) -> str:
    """Maps a file name to its MIME type, falling back to application/octet-stream."""
    extension = os.path.splitext(path)[1].lower()
    if extension in CONTENT_TYPES:
        return CONTENT_TYPES[extension]
    content_type, _ = mimetypes.guess_type(path)
    return content_type or DEFAULT_CONTENT_TYPE


def cache_control_for(content_type: str) -> Optional[str]:
    if content_type in SHORT_CACHE_TYPES:
        return SHORT_CACHE_CONTROL
    return None


def maybe_compress(data: bytes, enabled: bool) -> Tuple[bytes, Optional[str]]:
    """
    Gzips the file contents when compression is switched on.

    If compression fails for any reason the original bytes are returned
    untouched and the failure is only logged: the upload still goes ahead,
    just uncompressed. The returned encoding tag is the only way to tell the
    two outcomes apart.

    Args:
        data (bytes): The file contents.
        enabled (bool): Whether compression is switched on.

    Returns:
        Tuple[bytes, Optional[str]]: The bytes to upload and ``"gzip"`` when
                                     they were compressed, otherwise None.
    """
    if not enabled:
        return data, None
    try:
        return gzip.compress(data, mtime=0), GZIP_ENCODING
    except (OSError, zlib.error, ValueError) as e:
        logger.warning(f"Compression failed, uploading uncompressed instead. Error: {e}")
        return data, None


# --- Upload ---

def build_upload(asset: LocalAsset, gzip_enabled: bool = False) -> UploadDescriptor:
    """Reads one local file and prepares everything S3 needs to store it."""
    with open(asset.absolute_path, "rb") as f:
        raw: bytes = f.read()

    content_type = guess_content_type(asset.absolute_path)
    body, content_encoding = maybe_compress(raw, gzip_enabled)
    if content_encoding:
        logger.debug(f"Compressed {asset.relative_key}: {len(raw)} -> {len(body)} bytes")

    return UploadDescriptor(
        key=asset.relative_key,
        body=body,
        content_type=content_type,
        content_encoding=content_encoding,
        cache_control=cache_control_for(content_type),
    )


def upload_file(
    s3_client: boto3.client,
    target: DeploymentTarget,
    asset: LocalAsset,
    gzip_enabled: bool = False,
) -> UploadDescriptor:
    """
    Uploads a single file to the target bucket.

    Unlike the bucket steps this one raises on failure (``OSError`` when the
    file cannot be read, ``ClientError``/``BotoCoreError`` when S3 rejects it)
    so ``upload_directory`` can record exactly which file broke.

    Args:
        s3_client (boto3.client): An initialized S3 client.
        target (DeploymentTarget): The deployment target.
        asset (LocalAsset): The file to upload. Must not be a directory.
        gzip_enabled (bool): Whether to gzip the body first.

    Returns:
        UploadDescriptor: What was written to the bucket.
    """
    descriptor = build_upload(asset, gzip_enabled)
    logger.info(f"Uploading file {descriptor.key} to bucket {target.bucket_name}...")

    put_args = {
        "Bucket": target.bucket_name,
        "Key": descriptor.key,
        "Body": descriptor.body,
        "ContentType": descriptor.content_type,
    }
    if descriptor.content_encoding:
        put_args["ContentEncoding"] = descriptor.content_encoding
    if descriptor.cache_control:
        put_args["CacheControl"] = descriptor.cache_control

    s3_client.put_object(**put_args)
    return descriptor


def _record(summary: UploadSummary, key: str, future: Future) -> None:
    if future.cancelled():
        summary.skipped.append(key)
        summary.cancelled = True
        return
    try:
        future.result()
        summary.uploaded.append(key)
    except (ClientError, BotoCoreError, OSError) as e:
        logger.error(f"Failed to upload {key}. Error: {e}")
        summary.failed.append((key, str(e)))
    except Exception as e:
        logger.exception(f"Unexpected error uploading {key}: {e}")
        summary.failed.append((key, str(e)))


def _drain(
    pending: Dict[Future, str],
    summary: UploadSummary,
    cancel_event: Optional[threading.Event],
) -> None:
    if cancel_event is not None and cancel_event.is_set():
        # Queued uploads that have not started are dropped; running ones finish.
        for future in pending:
            future.cancel()
    done, _ = wait(list(pending), return_when=FIRST_COMPLETED)
    for future in done:
        _record(summary, pending.pop(future), future)


def upload_directory(
    s3_client: boto3.client,
    target: DeploymentTarget,
    root: str,
    gzip_enabled: bool = False,
    max_workers: int = DEFAULT_MAX_WORKERS,
    cancel_event: Optional[threading.Event] = None,
) -> UploadSummary:
    """
    Uploads every file under ``root`` to the bucket, keeping the folder structure.

    Simple Explanation:
    The walker hands us files one at a time and we pass each one to a small
    team of upload workers (``max_workers`` of them). To keep memory flat we
    never let more than twice that many files wait in line. If someone asks
    us to stop (``cancel_event``), we stop handing out new files, let the
    workers finish what they are holding, and report the run as cancelled.

    Args:
        s3_client (boto3.client): An initialized S3 client, shared by all workers.
        target (DeploymentTarget): The deployment target.
        root (str): The build folder.
        gzip_enabled (bool): Whether to gzip every file before upload.
        max_workers (int): Maximum number of uploads in flight at once.
        cancel_event (Optional[threading.Event]): When set, no new uploads start.

    Returns:
        UploadSummary: Which keys were uploaded, which failed and why.
    """
    summary = UploadSummary()
    max_workers = max(1, max_workers)
    max_queued = max_workers * 2
    root_abs = os.path.abspath(root)
    logger.info(f"Uploading files from '{root_abs}' to bucket '{target.bucket_name}'...")

    assets = walk_local_tree(root)
    pending: Dict[Future, str] = {}
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        while True:
            try:
                asset = next(assets)
            except StopIteration:
                break
            except OSError as e:
                # An unreadable folder ends the walk; uploads already queued still finish.
                key = normalize_key(os.path.relpath(e.filename, root_abs)) if e.filename else root_abs
                logger.error(f"Failed to read {key}. No further files will be uploaded. Error: {e}")
                summary.failed.append((key, str(e)))
                break
            if asset.is_directory:
                continue
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Cancellation requested. No further uploads will be started.")
                summary.cancelled = True
                break
            future = executor.submit(upload_file, s3_client, target, asset, gzip_enabled)
            pending[future] = asset.relative_key
            if len(pending) >= max_queued:
                _drain(pending, summary, cancel_event)

        while pending:
            _drain(pending, summary, cancel_event)

    logger.info("--- Upload Summary ---")
    logger.info(f"Successfully uploaded {len(summary.uploaded)} files.")
    if summary.failed:
        logger.warning(f"Failed to upload {len(summary.failed)} files:")
        for key, error in summary.failed:
            logger.warning(f"  - {key}: {error}")
    if summary.cancelled:
        logger.warning(f"Upload cancelled. {len(summary.skipped)} queued files were not uploaded.")
    return summary
