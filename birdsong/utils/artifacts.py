import logging
from pathlib import Path
from typing import Tuple

import boto3

log = logging.getLogger("birdsong.artifacts")


def is_s3_uri(location: str) -> bool:
    return str(location).startswith("s3://")


def split_s3_uri(uri: str) -> Tuple[str, str]:
    bucket, _, prefix = uri[len("s3://"):].partition("/")
    if not bucket:
        raise ValueError(f"Not an s3 uri: {uri}")
    prefix = prefix.rstrip("/")
    return bucket, (prefix + "/" if prefix else "")


def download_s3_prefix(bucket: str, prefix: str, local_dir: Path, region: str = None, client=None) -> int:
    """Mirror s3://bucket/prefix into local_dir. Files already on disk are skipped."""
    log.info(f"Staging model bundle: s3://{bucket}/{prefix} -> {local_dir}")
    s3 = client or boto3.client("s3", region_name=region or None)
    paginator = s3.get_paginator("list_objects_v2")
    total = 0
    for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
        for obj in page.get("Contents", []) or []:
            key = obj["Key"]
            rel = key[len(prefix):]
            if not rel or key.endswith("/"):
                continue
            dest = Path(local_dir) / rel
            if dest.exists():
                log.debug(f"Skipping {rel} (already staged)")
                continue
            dest.parent.mkdir(parents=True, exist_ok=True)
            # download next to the target and rename so a half-written file is never picked up
            part = dest.with_name(dest.name + ".part")
            s3.download_file(bucket, key, str(part))
            part.replace(dest)
            total += 1
            log.debug(f"Downloaded: {dest} ({obj.get('Size', 0) / 1024 / 1024:.2f} MB)")
    log.info(f"Staged {total} files")
    return total


def upload_dir(local_dir: Path, bucket: str, prefix: str, region: str = None, client=None) -> int:
    s3 = client or boto3.client("s3", region_name=region or None)
    total = 0
    for path in sorted(Path(local_dir).rglob("*")):
        if not path.is_file():
            continue
        key = prefix + path.relative_to(local_dir).as_posix()
        s3.upload_file(str(path), bucket, key)
        total += 1
        log.info(f"Uploaded {path.name} -> s3://{bucket}/{key}")
    return total


def resolve_model_dir(location: str, cache_dir: str, region: str = None, client=None) -> Path:
    """Local directories are used in place; s3:// bundles are staged into cache_dir first."""
    if not is_s3_uri(location):
        return Path(location)
    bucket, prefix = split_s3_uri(location)
    local = Path(cache_dir)
    local.mkdir(parents=True, exist_ok=True)
    download_s3_prefix(bucket, prefix, local, region=region, client=client)
    return local
