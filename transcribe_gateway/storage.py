import logging
import mimetypes
import os
import shutil
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator, Optional
from urllib.parse import quote, urlsplit

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings
from .errors import StorageUploadError
from .models import StagedUpload, UploadedAsset

MEDIA_CATEGORIES = {"audio", "video", "image"}


def upload_dir(settings: Settings) -> Path:
    d = Path(settings.upload_dir).resolve()
    d.mkdir(parents=True, exist_ok=True)
    return d


def upload_path(settings: Settings, filename: str) -> Path:
    suffix = Path(filename).suffix
    return upload_dir(settings) / f"{uuid.uuid4().hex}{suffix}"


def detect_content_type(filename: str, declared: Optional[str] = None) -> str:
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or declared or "application/octet-stream"


def content_category(content_type: str) -> str:
    major = content_type.split("/", 1)[0]
    return major if major in MEDIA_CATEGORIES else "raw"


@contextmanager
def saved_upload(
    settings: Settings,
    stream: BinaryIO,
    filename: Optional[str],
    content_type: Optional[str] = None,
) -> Iterator[UploadedAsset]:
    """
    Persist an inbound upload to local disk for the duration of one request.

    The file is removed on every exit path. A failed removal is logged and
    never re-raised, so it cannot mask the request's own outcome.
    """
    filename = Path(filename or "upload.bin").name
    path = upload_path(settings, filename)
    try:
        with path.open("wb") as out:
            shutil.copyfileobj(stream, out)
        yield UploadedAsset(path=str(path), filename=filename, content_type=content_type)
    finally:
        try:
            if path.exists():
                os.unlink(path)
                logging.info("Deleted temporary file: %s", path)
        except OSError:
            logging.exception("Cleanup failed for %s", path)


class UploadRelay:
    """Stages local uploads in S3-compatible storage and hands back a public URL."""

    def __init__(self, settings: Settings, client=None):
        self.settings = settings
        self._client = client

    @property
    def client(self):
        if self._client is None:
            s = self.settings
            config = Config(s3={"addressing_style": "path" if s.s3_force_path_style else "virtual"})
            self._client = boto3.client(
                "s3",
                endpoint_url=s.s3_endpoint,
                region_name=s.s3_region,
                aws_access_key_id=s.s3_access_key_id,
                aws_secret_access_key=s.s3_secret_access_key,
                config=config,
            )
        return self._client

    def object_key(self, asset: UploadedAsset, content_type: str) -> str:
        suffix = Path(asset.filename).suffix.lower()
        parts = [self.settings.s3_key_prefix, content_category(content_type), f"{uuid.uuid4().hex}{suffix}"]
        return "/".join(p for p in parts if p)

    def public_url(self, key: str) -> str:
        s = self.settings
        quoted = quote(key)
        if s.s3_public_base_url:
            return f"{s.s3_public_base_url}/{quoted}"
        if s.s3_endpoint:
            endpoint = s.s3_endpoint.rstrip("/")
            if s.s3_force_path_style:
                return f"{endpoint}/{s.s3_bucket}/{quoted}"
            parts = urlsplit(endpoint)
            return f"{parts.scheme}://{s.s3_bucket}.{parts.netloc}/{quoted}"
        if s.s3_region:
            return f"https://{s.s3_bucket}.s3.{s.s3_region}.amazonaws.com/{quoted}"
        return f"https://{s.s3_bucket}.s3.amazonaws.com/{quoted}"

    def stage(self, asset: UploadedAsset) -> StagedUpload:
        content_type = detect_content_type(asset.filename, asset.content_type)
        key = self.object_key(asset, content_type)
        extra_args = {"ContentType": content_type}
        if self.settings.s3_object_acl:
            extra_args["ACL"] = self.settings.s3_object_acl

        logging.info("Uploading file: %s to bucket %s as %s", asset.filename, self.settings.s3_bucket, key)
        try:
            self.client.upload_file(asset.path, self.settings.s3_bucket, key, ExtraArgs=extra_args)
        except (BotoCoreError, ClientError, OSError) as exc:
            raise StorageUploadError(f"Upload of {asset.filename} failed: {exc}") from exc

        staged = StagedUpload(url=self.public_url(key), key=key, content_type=content_type)
        logging.info("Staged URL: %s", staged.url)
        return staged

    def discard(self, staged: StagedUpload) -> None:
        try:
            self.client.delete_object(Bucket=self.settings.s3_bucket, Key=staged.key)
            logging.info("Deleted staged object: %s", staged.key)
        except (BotoCoreError, ClientError):
            logging.exception("Failed deleting staged object %s", staged.key)
