from __future__ import annotations

import concurrent.futures
import mimetypes
import os
import tempfile
from abc import ABC, abstractmethod
from io import IOBase
from typing import Any, BinaryIO, Callable, Dict, Iterator, List, Union, cast

import requests
from botocore.exceptions import BotoCoreError, ClientError
from typing_extensions import TypeAlias

from astral_projection.deadline import Deadline
from astral_projection.logger import logger
from astral_projection.storage.progress_bar import create_progress_bar

StreamLike: TypeAlias = Union[requests.Response, IOBase, BinaryIO]

DEFAULT_CHUNK_SIZE = 8 * 1024 * 1024


def iter_chunks(stream: StreamLike, chunk_size: int) -> Iterator[bytes]:
    if isinstance(stream, requests.Response):
        return stream.iter_content(chunk_size=chunk_size)
    response_io = cast(IOBase, stream)
    return iter(lambda: response_io.read(chunk_size), b"")


def guess_content_type(key: str) -> str:
    content_type, _ = mimetypes.guess_type(key)
    return content_type or "application/octet-stream"


class ObjectStore(ABC):
    """
    The read/write/exists view of a blob store the mirror needs.

    Keys are slash separated relative paths. Writes take a `Deadline` and must
    give up once it expires or is cancelled.
    """

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    def save_stream(
        self,
        key: str,
        stream: StreamLike,
        deadline: Deadline,
        total_size: int = 0,
    ) -> None:
        pass

    @abstractmethod
    def save_text(self, key: str, text: str, deadline: Deadline) -> None:
        pass

    def close(self) -> None:
        pass


class S3ObjectStore(ObjectStore):
    """
    A store for mirrored files in an S3 bucket.

    Streams are written with multipart uploads. Every S3 request runs on a
    worker thread and is waited for with the deadline, so a stalled request
    cannot hold the item past its timeout. An unfinished upload is aborted so
    that no partial object becomes visible.
    """

    def __init__(
        self,
        s3_client: Any,
        s3_bucket: str,
        s3_chunk_size: int = DEFAULT_CHUNK_SIZE,
        s3_max_concurrency: int = 4,
        with_progress_bar: bool = False,
    ) -> None:
        self.s3 = s3_client
        self.s3_bucket = s3_bucket
        self.s3_chunk_size = s3_chunk_size
        self.s3_max_concurrency = s3_max_concurrency
        self.with_progress_bar = with_progress_bar

    @staticmethod
    def _call(
        executor: concurrent.futures.ThreadPoolExecutor,
        deadline: Deadline,
        operation: str,
        fn: Callable[..., Any],
        **kwargs: Any,
    ) -> Any:
        future = executor.submit(fn, **kwargs)
        deadline.wait([future], operation)
        return future.result()

    def save_text(self, key: str, text: str, deadline: Deadline) -> None:
        operation = f"Upload of {key}"
        deadline.check(operation)
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        try:
            self._call(
                executor,
                deadline,
                operation,
                self.s3.put_object,
                Bucket=self.s3_bucket,
                Key=key,
                Body=text.encode("utf-8"),
                ContentType=f"{guess_content_type(key)}; charset=utf-8",
            )
        finally:
            # A request still in flight is abandoned, not waited for
            executor.shutdown(wait=False, cancel_futures=True)
        logger.debug(f"Text object saved to {key}")

    def save_stream(
        self,
        key: str,
        stream: StreamLike,
        deadline: Deadline,
        total_size: int = 0,
    ) -> None:
        """
        Uploads a stream to S3 with a multipart upload.

        Args:
            key (str): The object key.
            stream (StreamLike): The binary stream to upload.
            deadline (Deadline): The time budget of the upload.
            total_size (int): The stream size, used by the progress bar only.

        Raises:
            UploadTimeoutError: If the deadline passes before the upload completes.
            CancelledError: If shutdown is requested during the upload.
        """
        operation = f"Upload of {key}"
        upload_id = None
        upload_completed = False
        progress_bar = create_progress_bar(
            f"Uploading {os.path.basename(key)}", total_size, self.with_progress_bar
        )
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.s3_max_concurrency
        )
        try:
            deadline.check(operation)
            upload = self._call(
                executor,
                deadline,
                operation,
                self.s3.create_multipart_upload,
                Bucket=self.s3_bucket,
                Key=key,
                ContentType=guess_content_type(key),
            )
            upload_id = upload["UploadId"]
            parts: List[Dict[str, Any]] = []
            futures: List[concurrent.futures.Future] = []
            part_number = 1

            for chunk in iter_chunks(stream, self.s3_chunk_size):
                while len(futures) >= self.s3_max_concurrency:
                    done, _ = deadline.wait(
                        futures, operation, concurrent.futures.FIRST_COMPLETED
                    )
                    for future in done:
                        parts.append(future.result())
                        futures.remove(future)

                deadline.check(operation)
                futures.append(
                    executor.submit(
                        self._upload_part, key, upload_id, part_number, chunk
                    )
                )
                part_number += 1
                progress_bar.advance_progress_bar(len(chunk))

            done, _ = deadline.wait(futures, operation)
            parts.extend(future.result() for future in done)

            if not parts:
                # S3 refuses to complete a multipart upload without parts
                self.s3.abort_multipart_upload(
                    Bucket=self.s3_bucket, Key=key, UploadId=upload_id
                )
                upload_id = None
                self._call(
                    executor,
                    deadline,
                    operation,
                    self.s3.put_object,
                    Bucket=self.s3_bucket,
                    Key=key,
                    Body=b"",
                    ContentType=guess_content_type(key),
                )
                upload_completed = True
                return

            parts.sort(key=lambda part: part["PartNumber"])
            self._call(
                executor,
                deadline,
                operation,
                self.s3.complete_multipart_upload,
                Bucket=self.s3_bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
            upload_completed = True
            logger.debug(f"Stream saved to {key} in {len(parts)} part(s)")
        finally:
            progress_bar.close_progress_bar()
            # Parts still in flight are abandoned, not waited for
            executor.shutdown(wait=False, cancel_futures=True)
            if upload_id is not None and not upload_completed:
                self._abort_upload(key, upload_id)

    def _abort_upload(self, key: str, upload_id: str) -> None:
        try:
            self.s3.abort_multipart_upload(
                Bucket=self.s3_bucket, Key=key, UploadId=upload_id
            )
            logger.debug(f"Aborted the multipart upload of {key}")
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"Failed to abort the multipart upload of {key}: {e}")

    def _upload_part(
        self,
        key: str,
        upload_id: str,
        part_number: int,
        chunk: bytes,
    ) -> Dict[str, Any]:
        """
        Uploads a part of a file to S3.

        Returns:
            dict: A dictionary containing the part number and the ETag of the uploaded part.
        """
        part = self.s3.upload_part(
            Body=chunk,
            Bucket=self.s3_bucket,
            Key=key,
            UploadId=upload_id,
            PartNumber=part_number,
        )
        return {"PartNumber": part_number, "ETag": part["ETag"]}

    def exists(self, key: str) -> bool:
        """
        Checks if an object exists in the S3 bucket.

        Returns:
            bool: True if the object exists, False otherwise.
        """
        try:
            self.s3.head_object(Bucket=self.s3_bucket, Key=key)
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] in ("404", "NoSuchKey", "NotFound"):
                return False
            raise

    def close(self) -> None:
        close = getattr(self.s3, "close", None)
        if close is not None:
            close()


class FileSystemObjectStore(ObjectStore):
    """
    A store that keeps mirrored files under a local directory, useful when
    the mirror directory is served by a plain web server.
    """

    def __init__(
        self,
        root: str,
        chunk_size: int = 1024 * 1024,
        with_progress_bar: bool = False,
    ) -> None:
        self.root = os.path.abspath(root)
        self.chunk_size = chunk_size
        self.with_progress_bar = with_progress_bar
        os.makedirs(self.root, exist_ok=True)

    def _resolve(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.root, key.lstrip("/")))
        if os.path.commonpath([self.root, path]) != self.root or path == self.root:
            raise ValueError(f"Key {key} resolves outside of {self.root}")
        return path

    def exists(self, key: str) -> bool:
        return os.path.isfile(self._resolve(key))

    def _write_atomically(
        self,
        key: str,
        chunks: Iterator[bytes],
        deadline: Deadline,
        total_size: int = 0,
    ) -> None:
        path = self._resolve(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(path), suffix=".part")
        progress_bar = create_progress_bar(
            f"Saving {os.path.basename(key)}", total_size, self.with_progress_bar
        )
        try:
            with os.fdopen(fd, "wb") as f:
                for chunk in chunks:
                    deadline.check(f"Upload of {key}")
                    f.write(chunk)
                    progress_bar.advance_progress_bar(len(chunk))
            deadline.check(f"Upload of {key}")
            os.replace(tmp_path, path)
        finally:
            progress_bar.close_progress_bar()
            if os.path.exists(tmp_path):
                os.remove(tmp_path)

    def save_stream(
        self,
        key: str,
        stream: StreamLike,
        deadline: Deadline,
        total_size: int = 0,
    ) -> None:
        self._write_atomically(
            key, iter_chunks(stream, self.chunk_size), deadline, total_size
        )

    def save_text(self, key: str, text: str, deadline: Deadline) -> None:
        self._write_atomically(key, iter([text.encode("utf-8")]), deadline)

