#!/usr/bin/env python3
import argparse
import json
import logging
from pathlib import Path

from birdsong.bundle import build_bundle
from birdsong.utils.artifacts import is_s3_uri, split_s3_uri, upload_dir
from birdsong.utils.logs import setup_logging

log = logging.getLogger("build_bundle")


def parse_args():
    p = argparse.ArgumentParser(description="Write a model bundle directory (and optionally upload it)")
    p.add_argument("--out", required=True, help="output directory")
    p.add_argument("--labels", required=True,
                   help="labels.json / one-label-per-line file, or a comma separated list")
    p.add_argument("--config", default=None, help="JSON file with config overrides")
    p.add_argument("--upload", default=None, help="s3://bucket/prefix to upload the bundle to")
    p.add_argument("--region", default=None)
    p.add_argument("--seed", type=int, default=42)
    return p.parse_args()


def read_labels(spec: str):
    path = Path(spec)
    if not path.exists():
        return [s.strip() for s in spec.split(",") if s.strip()]
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        data = json.loads(text)
        return data if isinstance(data, list) else list(data.values())
    return [ln.strip() for ln in text.splitlines() if ln.strip()]


def main():
    a = parse_args()
    setup_logging("INFO")
    overrides = json.loads(Path(a.config).read_text()) if a.config else None
    out = build_bundle(a.out, read_labels(a.labels), config=overrides, seed=a.seed)

    if a.upload:
        if not is_s3_uri(a.upload):
            raise SystemExit(f"--upload must be an s3:// uri, got {a.upload}")
        bucket, prefix = split_s3_uri(a.upload)
        n = upload_dir(out, bucket, prefix, region=a.region)
        log.info(f"Uploaded {n} files to s3://{bucket}/{prefix}")


if __name__ == "__main__":
    main()
