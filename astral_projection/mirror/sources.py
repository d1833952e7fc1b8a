from __future__ import annotations

import os
from typing import List

from astral_projection.constants import MANIFEST_EXTENSION
from astral_projection.exceptions import ConfigurationError
from astral_projection.logger import logger


def ensure_manifest_dir(root: str, create: bool = True) -> str:
    """
    Checks the root directory of the tracked manifests at startup.

    Args:
        root (str): The configured directory.
        create (bool): Create the directory when it does not exist yet.

    Returns:
        str: The absolute path of the directory.

    Raises:
        ConfigurationError: If the directory is not configured, or missing
            while `create` is False, or is not a directory.
    """
    if not root or not root.strip():
        raise ConfigurationError("Manifest directory name is empty")

    path = os.path.abspath(os.path.expanduser(root))
    if not os.path.exists(path):
        if not create:
            raise ConfigurationError(f"Manifest directory {path} does not exist")
        os.makedirs(path, exist_ok=True)
        logger.info(f"Created manifest directory {path}")
    elif not os.path.isdir(path):
        raise ConfigurationError(f"{path} is not a directory")

    return path


def find_manifest_files(root: str, extension: str = MANIFEST_EXTENSION) -> List[str]:
    """
    Lists the tracked manifest files under a directory, recursively.

    Items are independent of each other, the sorting only makes the logs
    easier to follow.

    Raises:
        ConfigurationError: If the directory does not exist.
    """
    if not os.path.isdir(root):
        raise ConfigurationError(f"Manifest directory {root} does not exist")

    files: List[str] = []
    for dirpath, _, filenames in os.walk(root):
        for filename in filenames:
            if filename.lower().endswith(extension):
                files.append(os.path.join(dirpath, filename))

    logger.debug(f"Found {len(files)} manifest file(s) in {root}")
    return sorted(files)
