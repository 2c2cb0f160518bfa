"""
Image storage.

Uploaded files are first written to the local upload directory. When the
remote asset host (Cloudinary) is configured the file is pushed there and the
hosted URL is returned; otherwise, or when the push fails, the file stays local
and is served under ``/uploads/<filename>``. Only ``url`` is stable across
both paths.
"""
import logging
import os
import random
import shutil
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from urllib.parse import urlparse

import cloudinary
import cloudinary.uploader
from fastapi import UploadFile

from errors import ValidationError
from settings import Settings

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 5 * 1024 * 1024
MAX_FILES = 5
LOCAL_PREFIX = "/uploads/"


@dataclass
class UploadResult:
    url: str
    public_id: str
    format: str
    size: int
    remote: bool = False


@dataclass
class DeleteOutcome:
    deleted: List[str] = field(default_factory=list)
    failures: List[Tuple[str, str]] = field(default_factory=list)


class UploadResolver:
    def __init__(self, settings: Settings):
        self.upload_dir = settings.upload_dir
        os.makedirs(self.upload_dir, exist_ok=True)
        self.remote_enabled = settings.cloudinary_configured
        if self.remote_enabled:
            cloudinary.config(
                cloud_name=settings.cloudinary_cloud_name,
                api_key=settings.cloudinary_api_key,
                api_secret=settings.cloudinary_api_secret,
                secure=True,
            )
            logger.info("Cloudinary configured successfully")
        else:
            logger.warning("Cloudinary not configured. Image uploads will be stored locally only.")

    # ----------------------- Local staging -----------------------
    def save_local(self, upload: UploadFile, fieldname: str = "images") -> str:
        if not (upload.content_type or "").startswith("image/"):
            raise ValidationError("Only image files are allowed!")
        if upload.size is not None and upload.size > MAX_FILE_SIZE:
            raise ValidationError("Image exceeds the 5MB limit")
        original = upload.filename or ""
        extension = original.rsplit(".", 1)[-1].lower() if "." in original else "bin"
        unique_suffix = f"{int(time.time() * 1000)}-{random.randint(0, 10 ** 9)}"
        filename = f"{fieldname}-{unique_suffix}.{extension}"
        path = os.path.join(self.upload_dir, filename)
        with open(path, "wb") as out:
            shutil.copyfileobj(upload.file, out)
        if os.path.getsize(path) > MAX_FILE_SIZE:
            os.remove(path)
            raise ValidationError("Image exceeds the 5MB limit")
        return path

    def local_result(self, path: str) -> UploadResult:
        filename = os.path.basename(path)
        base, _, ext = filename.rpartition(".")
        return UploadResult(
            url=f"{LOCAL_PREFIX}{filename}",
            public_id=base or filename,
            format=ext if base else "",
            size=os.path.getsize(path),
        )

    # ----------------------- Resolution -----------------------
    def resolve(self, path: str, folder: str) -> UploadResult:
        if not self.remote_enabled:
            return self.local_result(path)
        try:
            result = cloudinary.uploader.upload(path, folder=folder, use_filename=True)
        except Exception as exc:
            logger.warning("Cloudinary upload failed for %s, using local storage: %s", path, exc)
            return self.local_result(path)
        size = result.get("bytes") or os.path.getsize(path)
        try:
            os.remove(path)
        except OSError:
            logger.warning("Could not remove staged upload %s", path)
        return UploadResult(
            url=result["secure_url"],
            public_id=result["public_id"],
            format=result.get("format", ""),
            size=size,
            remote=True,
        )

    def resolve_many(self, paths: List[str], folder: str) -> List[UploadResult]:
        if len(paths) <= 1:
            return [self.resolve(p, folder) for p in paths]
        with ThreadPoolExecutor(max_workers=min(len(paths), MAX_FILES)) as pool:
            return list(pool.map(lambda p: self.resolve(p, folder), paths))

    def store(self, uploads: List[UploadFile], folder: str, fieldname: str = "images") -> List[str]:
        """Stage and resolve a batch of uploads, returning their public URLs in order."""
        paths = []
        try:
            for upload in uploads:
                paths.append(self.save_local(upload, fieldname))
        except ValidationError:
            # Drop what this batch already staged.
            for path in paths:
                try:
                    os.remove(path)
                except OSError:
                    logger.warning("Could not remove staged upload %s", path)
            raise
        return [r.url for r in self.resolve_many(paths, folder)]

    # ----------------------- Deletion -----------------------
    @staticmethod
    def remote_public_id(url: str) -> Optional[str]:
        if "cloudinary.com" not in url:
            return None
        parts = urlparse(url).path.split("/")
        if "upload" in parts:
            parts = parts[parts.index("upload") + 1:]
        # Drop the version segment (v1712345678).
        if parts and parts[0].startswith("v") and parts[0][1:].isdigit():
            parts = parts[1:]
        if not parts:
            return None
        public_id = "/".join(parts)
        return public_id.rsplit(".", 1)[0]

    def destroy(self, url: str) -> None:
        public_id = self.remote_public_id(url)
        if public_id:
            cloudinary.uploader.destroy(public_id)
            return
        if url.startswith(LOCAL_PREFIX):
            target = os.path.join(self.upload_dir, os.path.basename(url))
            try:
                os.remove(target)
            except FileNotFoundError:
                return

    def destroy_many(self, urls: List[str]) -> DeleteOutcome:
        outcome = DeleteOutcome()
        for url in urls or []:
            if not url:
                continue
            try:
                self.destroy(url)
            except Exception as exc:
                logger.warning("Error deleting image %s: %s", url, exc)
                outcome.failures.append((url, str(exc)))
            else:
                outcome.deleted.append(url)
        return outcome
