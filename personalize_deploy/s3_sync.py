import hashlib
import mimetypes
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from loguru import logger
from pydantic import BaseModel

DELETE_BATCH_SIZE = 1000


class SyncReport(BaseModel):
    uploaded: List[str] = []
    skipped: List[str] = []
    deleted: List[str] = []


def _local_files(local_dir: Path, prefix: str) -> Dict[str, Path]:
    files = {}
    for path in sorted(local_dir.rglob("*")):
        if path.is_file():
            relative = path.relative_to(local_dir).as_posix()
            files[f"{prefix}/{relative}" if prefix else relative] = path
    return files


async def _remote_objects(client: Any, bucket: str, prefix: str) -> Dict[str, dict]:
    objects = {}
    paginator = client.get_paginator("list_objects_v2")
    async for page in paginator.paginate(Bucket=bucket, Prefix=f"{prefix}/" if prefix else ""):
        for item in page.get("Contents", []):
            objects[item["Key"]] = item
    return objects


def _unchanged(path: Path, remote: dict) -> bool:
    """Same size and content as the remote object.

    Multipart uploads have an ETag that is not an MD5 of the body, so those
    objects count as unchanged when the remote copy is at least as new as
    the local file, as ``aws s3 sync`` does.
    """
    stat = path.stat()
    if remote.get("Size") != stat.st_size:
        return False
    etag = remote.get("ETag", "").strip('"')
    if "-" in etag:
        last_modified = remote.get("LastModified")
        local_mtime = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        return last_modified is not None and last_modified >= local_mtime
    return etag == hashlib.md5(path.read_bytes()).hexdigest()


async def sync_directory(
    client: Any, local_dir: Path, bucket: str, prefix: str = ""
) -> SyncReport:
    """Mirror ``local_dir`` onto ``s3://bucket/prefix``, deleting keys that have no local file"""
    local_dir = Path(local_dir)
    if not local_dir.is_dir():
        raise FileNotFoundError(f"Nothing to sync, {local_dir} is not a directory")

    prefix = prefix.strip("/")
    local = _local_files(local_dir, prefix)
    remote = await _remote_objects(client, bucket, prefix)
    report = SyncReport()

    for key, path in local.items():
        if key in remote and _unchanged(path, remote[key]):
            report.skipped.append(key)
            continue
        content_type = mimetypes.guess_type(path.name)[0] or "binary/octet-stream"
        await client.put_object(
            Bucket=bucket, Key=key, Body=path.read_bytes(), ContentType=content_type
        )
        logger.debug(f"upload: {path} to s3://{bucket}/{key}")
        report.uploaded.append(key)

    stale = [key for key in remote if key not in local]
    for start in range(0, len(stale), DELETE_BATCH_SIZE):
        batch = stale[start : start + DELETE_BATCH_SIZE]
        await client.delete_objects(
            Bucket=bucket,
            Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
        )
        for key in batch:
            logger.debug(f"delete: s3://{bucket}/{key}")
        report.deleted.extend(batch)

    logger.info(
        f"Synced {local_dir} to s3://{bucket}/{prefix}: {len(report.uploaded)} uploaded, "
        f"{len(report.skipped)} unchanged, {len(report.deleted)} deleted"
    )
    return report
