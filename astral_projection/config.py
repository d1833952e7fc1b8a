from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Literal, Optional

from croniter import croniter
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from astral_projection.constants import CONFIG_ENV_VAR, DEFAULT_CONFIG_FILE
from astral_projection.exceptions import ConfigurationError

CONFIG_VERSION = "1.0"

MiB = 1024 * 1024


class AstralBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class StorageConfig(AstralBaseModel):
    """
    Represents the object store the mirror writes to.
    """

    type: Literal["s3", "local"] = Field(
        "s3", description="The kind of object store, s3 or a local directory."
    )
    bucket: Optional[str] = Field(None, description="The S3 bucket name.")
    region: Optional[str] = Field(None, description="The region of the bucket.")
    endpointUrl: Optional[str] = Field(
        None, description="Custom endpoint for S3 compatible services."
    )
    accessKeyId: Optional[str] = Field(
        None, description="Long-term access key used to request temporary credentials."
    )
    secretAccessKey: Optional[str] = Field(
        None, description="Secret of the long-term access key."
    )
    stsEndpointUrl: Optional[str] = Field(
        None, description="Custom endpoint of the temporary credential service."
    )
    useTemporaryCredentials: bool = Field(
        True,
        description="Exchange the long-term key for a temporary one on every cycle.",
    )
    allowActions: List[str] = Field(
        ["s3:*"], description="Actions granted to the temporary credentials."
    )
    durationSeconds: int = Field(
        7200, description="Lifetime of the temporary credentials in seconds."
    )
    path: Optional[str] = Field(
        None, description="Root directory when the store type is local."
    )
    chunkSize: int = Field(8 * MiB, description="Multipart upload part size in bytes.")
    maxConcurrency: int = Field(
        4, description="Number of multipart upload parts sent in parallel."
    )

    @field_validator("durationSeconds")
    def validate_duration_seconds(cls, v: int) -> int:
        """
        Validates the lifetime of the temporary credentials.

        Raises:
            ValueError: If the value is outside of what STS accepts.
        """
        if v < 900 or v > 129600:
            raise ValueError("durationSeconds must be between 900 and 129600")
        return v

    @field_validator("chunkSize")
    def validate_chunk_size(cls, v: int) -> int:
        if v < 5 * MiB:
            raise ValueError("chunkSize must be at least 5 MiB")
        return v

    @field_validator("maxConcurrency")
    def validate_max_concurrency(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("maxConcurrency must be greater than 0")
        return v

    @model_validator(mode="after")
    def check_backend_fields(self) -> "StorageConfig":
        if self.type == "s3" and not self.bucket:
            raise ValueError("bucket is required for the s3 storage")
        if self.type == "local" and not self.path:
            raise ValueError("path is required for the local storage")
        return self


class AstralConfig(AstralBaseModel):
    """
    Represents the manifest mirror worker.
    """

    dir: str = Field(..., description="Root directory of the tracked manifests.")
    prefix: str = Field(
        ..., description="URL prefix the mirrored manifest and archive are served from."
    )
    schedule: str = Field(
        "30 */12 * * *", description="Cron expression of the synchronization runs."
    )
    uploadTimeout: int = Field(
        180, description="Upload timeout of a single item in seconds."
    )
    sizeLimit: int = Field(
        100 * MiB, description="Archive size limit in bytes, 0 to disable."
    )
    httpTimeout: int = Field(
        60, description="Connect and read timeout of origin requests in seconds."
    )
    missingEntryPolicy: Literal["fail", "upload"] = Field(
        "fail",
        description="What to do with an archive that has no metadata entry to patch.",
    )
    progress: bool = Field(False, description="Show transfer progress bars.")

    @field_validator("dir")
    def validate_dir(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("dir must not be empty")
        return v

    @field_validator("prefix")
    def validate_prefix(cls, v: str) -> str:
        """
        Validates the URL prefix and makes sure it ends with a slash.

        Raises:
            ValueError: If the prefix is empty.
        """
        if not v.strip():
            raise ValueError("prefix must not be empty")
        return v if v.endswith("/") else f"{v}/"

    @field_validator("schedule")
    def validate_schedule(cls, v: str) -> str:
        if not croniter.is_valid(v):
            raise ValueError(f"Invalid cron expression: {v}")
        return v

    @field_validator("uploadTimeout", "httpTimeout")
    def validate_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Timeouts must be greater than 0")
        return v

    @field_validator("sizeLimit")
    def validate_size_limit(cls, v: int) -> int:
        if v < 0:
            raise ValueError("sizeLimit cannot be less than 0")
        return v


class Config(AstralBaseModel):
    """
    The top level configuration file.
    """

    version: str = Field(..., description="The version of the configuration format.")
    storage: StorageConfig
    astral: AstralConfig


def parse_yaml(yaml_str: str) -> Config:
    """
    Parse a YAML string and return a Config object.

    Args:
        yaml_str (str): The YAML string to parse.

    Returns:
        Config: The parsed Config object.

    Raises:
        ValueError: If the version is missing or unsupported, or a field is invalid.
    """
    yaml = YAML(typ="safe")
    data: Dict[str, Any] = yaml.load(yaml_str) or {}
    if not isinstance(data, dict):
        raise ValueError("Invalid configuration: A mapping is expected.")

    version = data.get("version", None)
    if version is None:
        raise ValueError("Invalid configuration: The 'version' field is missing.")

    version = str(version)
    if not re.match(r"^\d+\.\d+$", version):
        raise ValueError('version must be in the format "x.x"')

    major_version = int(version.split(".")[0])
    tool_major_version = int(CONFIG_VERSION.split(".")[0])
    if major_version != tool_major_version:
        raise ValueError(
            f"Invalid configuration: This tool supports version {tool_major_version}.x only."
        )

    data["version"] = version
    return Config(**data)


def resolve_config_path(path: Optional[str] = None) -> str:
    """
    Picks the configuration file: the explicit path, then the environment
    variable, then the default file name in the working directory.
    """
    return path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILE


def load_config(path: Optional[str] = None) -> Config:
    """
    Reads and validates the configuration file.

    Args:
        path (Optional[str]): The configuration file path.

    Returns:
        Config: The validated configuration.

    Raises:
        ConfigurationError: If the file cannot be read or is invalid.
    """
    config_path = resolve_config_path(path)
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            return parse_yaml(f.read())
    except OSError as e:
        raise ConfigurationError(
            f"Unable to read the configuration file {config_path}: {e}"
        ) from e
    except (YAMLError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e
