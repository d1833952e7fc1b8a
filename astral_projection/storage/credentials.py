from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generator, Optional

import boto3
from botocore.client import Config as BotoConfig

from astral_projection.config import StorageConfig
from astral_projection.exceptions import ConfigurationError
from astral_projection.logger import logger
from astral_projection.storage.store import (
    FileSystemObjectStore,
    ObjectStore,
    S3ObjectStore,
)

# Federated user names are limited to 32 characters
FEDERATED_USER_NAME = "astral-projection"


@dataclass
class TemporaryCredentials:
    access_key_id: str
    secret_access_key: str
    session_token: str
    expiration: Optional[datetime] = None


def build_policy(bucket: str, allow_actions: list) -> str:
    """
    Builds the inline policy that scopes the temporary credentials down to
    the mirror bucket.

    Args:
        bucket (str): The bucket name.
        allow_actions (list): The allowed S3 actions, e.g. ["s3:*"].

    Returns:
        str: The policy document as JSON.
    """
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Action": allow_actions,
                    "Resource": [
                        f"arn:aws:s3:::{bucket}",
                        f"arn:aws:s3:::{bucket}/*",
                    ],
                }
            ],
        }
    )


def issue_temporary_credentials(config: StorageConfig) -> TemporaryCredentials:
    """
    Exchanges the configured long-term key for temporary credentials limited
    to the configured actions and lifetime.

    The credentials are not refreshed. A cycle outliving them fails its
    remaining uploads, and the next cycle requests new ones.
    """
    sts = boto3.client(
        "sts",
        region_name=config.region,
        endpoint_url=config.stsEndpointUrl,
        aws_access_key_id=config.accessKeyId,
        aws_secret_access_key=config.secretAccessKey,
    )
    response = sts.get_federation_token(
        Name=FEDERATED_USER_NAME,
        Policy=build_policy(str(config.bucket), config.allowActions),
        DurationSeconds=config.durationSeconds,
    )
    credentials = response["Credentials"]
    logger.debug(f"Temporary credentials issued until {credentials.get('Expiration')}")
    return TemporaryCredentials(
        access_key_id=credentials["AccessKeyId"],
        secret_access_key=credentials["SecretAccessKey"],
        session_token=credentials["SessionToken"],
        expiration=credentials.get("Expiration"),
    )


def check_credentials(config: StorageConfig) -> None:
    """
    Makes sure credentials can be resolved before the first cycle starts.

    Raises:
        ConfigurationError: If no credentials are available.
    """
    if config.type != "s3":
        return

    if bool(config.accessKeyId) != bool(config.secretAccessKey):
        raise ConfigurationError(
            "accessKeyId and secretAccessKey must be configured together"
        )

    if config.accessKeyId:
        return

    if boto3.Session().get_credentials() is None:
        raise ConfigurationError("No AWS credentials are configured for the storage")


def create_s3_client(
    config: StorageConfig,
    credentials: Optional[TemporaryCredentials] = None,
    timeout: Optional[float] = None,
) -> Any:
    """
    Creates the S3 client of a store.

    Args:
        config (StorageConfig): The storage configuration.
        credentials (Optional[TemporaryCredentials]): Temporary credentials to
            use instead of the configured key.
        timeout (Optional[float]): Connect and read timeout of every request
            in seconds, the botocore default when None.
    """
    boto_config = BotoConfig(signature_version="s3v4")
    if timeout:
        boto_config = boto_config.merge(
            BotoConfig(connect_timeout=timeout, read_timeout=timeout)
        )
    if credentials is not None:
        return boto3.client(
            "s3",
            region_name=config.region,
            endpoint_url=config.endpointUrl,
            aws_access_key_id=credentials.access_key_id,
            aws_secret_access_key=credentials.secret_access_key,
            aws_session_token=credentials.session_token,
            config=boto_config,
        )

    return boto3.client(
        "s3",
        region_name=config.region,
        endpoint_url=config.endpointUrl,
        aws_access_key_id=config.accessKeyId,
        aws_secret_access_key=config.secretAccessKey,
        config=boto_config,
    )


@contextmanager
def open_store(
    config: StorageConfig,
    with_progress_bar: bool = False,
    timeout: Optional[float] = None,
) -> Generator[ObjectStore, None, None]:
    """
    Acquires a store handle for one cycle and releases it afterwards.

    Every call requests its own temporary credentials, so no handle outlives
    the scope it was created for. `timeout` bounds every S3 request.
    """
    store: ObjectStore
    if config.type == "local":
        store = FileSystemObjectStore(
            str(config.path), with_progress_bar=with_progress_bar
        )
    else:
        credentials = (
            issue_temporary_credentials(config)
            if config.useTemporaryCredentials
            else None
        )
        store = S3ObjectStore(
            create_s3_client(config, credentials, timeout),
            str(config.bucket),
            s3_chunk_size=config.chunkSize,
            s3_max_concurrency=config.maxConcurrency,
            with_progress_bar=with_progress_bar,
        )

    try:
        yield store
    finally:
        store.close()
