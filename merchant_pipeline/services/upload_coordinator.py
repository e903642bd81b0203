import re
import time
import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

from merchant_pipeline.core.config import Settings
from merchant_pipeline.schemas.upload_schema import (
    FilePayload,
    UploadOutcome,
    UploadOutcomeStatus,
    UploadSummary,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def sanitize_actor(actor: Optional[str]) -> str:
    """Storage prefix for an actor: ``jane@shop.com`` -> ``jane_shop_com``."""
    if not actor:
        return "unknown"
    return re.sub(r"[^A-Za-z0-9_-]", "_", actor)


def sanitize_filename(filename: Optional[str]) -> str:
    """Object-key safe filename: path separators, spaces and dot runs become single characters."""
    cleaned = re.sub(r"[^A-Za-z0-9._-]", "_", filename or "")
    cleaned = re.sub(r"\.{2,}", ".", cleaned).lstrip(".")
    return cleaned or "file"


class UploadCoordinator:
    """Stores submitted documents in the Supabase bucket one file at a time.

    Oversized files are skipped without touching the store. Every other file
    gets up to ``max_attempts`` tries, waiting ``attempt * backoff`` seconds
    after each failed try. A fixed pacing delay separates consecutive uploads.
    """

    def __init__(
        self,
        supabase_client,
        bucket: str,
        max_bytes: int = 8 * 1024 * 1024,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        pacing_seconds: float = 0.1,
        sleep: Sleep = asyncio.sleep,
    ):
        self.supabase = supabase_client
        self.bucket = bucket
        self.max_bytes = max_bytes
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.pacing_seconds = pacing_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, supabase_client, sleep: Sleep = asyncio.sleep) -> "UploadCoordinator":
        return cls(
            supabase_client,
            bucket=settings.STORAGE_BUCKET,
            max_bytes=settings.MAX_UPLOAD_BYTES,
            max_attempts=settings.UPLOAD_MAX_ATTEMPTS,
            backoff_seconds=settings.UPLOAD_BACKOFF_SECONDS,
            pacing_seconds=settings.UPLOAD_PACING_SECONDS,
            sleep=sleep,
        )

    @property
    def max_mb(self) -> int:
        return self.max_bytes // (1024 * 1024)

    # Uploads every file sequentially and returns the per-file outcomes
    async def upload_all(self, files: List[FilePayload], actor: Optional[str]) -> UploadSummary:
        summary = UploadSummary(max_mb=self.max_mb)
        attempted_any = False

        for file in files:
            size_mb = file.size / 1024 / 1024
            logger.info(f"Processing file upload for {file.document_type}: {file.filename} ({size_mb:.2f}MB)")

            if file.size > self.max_bytes:
                logger.warning(f"File too large: {file.filename} ({size_mb:.2f}MB), skipping")
                summary.outcomes.append(UploadOutcome(
                    document_type=file.document_type,
                    filename=file.filename,
                    status=UploadOutcomeStatus.skipped_too_large,
                    error=f"too large - max {self.max_mb}MB",
                ))
                continue

            if attempted_any:
                await self._sleep(self.pacing_seconds)
            attempted_any = True

            summary.outcomes.append(await self._upload_with_retry(file, actor))

        logger.info(
            f"Upload summary: {len(summary.uploaded)} successful, "
            f"{len(summary.failed)} failed, {len(summary.skipped)} skipped"
        )
        return summary

    # Tries one file up to max_attempts times with linear backoff
    async def _upload_with_retry(self, file: FilePayload, actor: Optional[str]) -> UploadOutcome:
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            path = self.storage_path(actor, file)
            try:
                # The storage client is synchronous
                url = await asyncio.to_thread(self._put, path, file)
                logger.info(f"File uploaded successfully: {file.document_type} -> {path}")
                return UploadOutcome(
                    document_type=file.document_type,
                    filename=file.filename,
                    status=UploadOutcomeStatus.succeeded,
                    url=url,
                    attempts=attempt,
                )
            except Exception as e:
                last_error = str(e)
                logger.warning(f"Upload attempt {attempt}/{self.max_attempts} failed for {file.document_type}: {last_error}")
                if attempt < self.max_attempts:
                    await self._sleep(attempt * self.backoff_seconds)

        logger.error(f"Final failure for {file.document_type} after {self.max_attempts} attempts")
        return UploadOutcome(
            document_type=file.document_type,
            filename=file.filename,
            status=UploadOutcomeStatus.failed,
            error=last_error,
            attempts=self.max_attempts,
        )

    def storage_path(self, actor: Optional[str], file: FilePayload) -> str:
        millis = int(time.time() * 1000)
        return f"{sanitize_actor(actor)}/{millis}_{sanitize_filename(file.document_type)}_{sanitize_filename(file.filename)}"

    # Writes the object and resolves its public URL
    def _put(self, path: str, file: FilePayload) -> str:
        options = {"cache-control": "3600", "upsert": "false"}
        if file.content_type:
            options["content-type"] = file.content_type

        bucket = self.supabase.storage.from_(self.bucket)
        res = bucket.upload(path, file.content, options)
        if isinstance(res, dict) and res.get("error"):
            raise RuntimeError(f"Upload failed with result: {res['error']}")

        url = bucket.get_public_url(path)
        if not url:
            raise RuntimeError(f"No public URL returned for {path}")
        return url

