"""Constants used in the project."""

import os
from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONNECTION_ERROR = 2
    RESOLUTION_ERROR = 3
    INTEGRITY_ERROR = 4


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    VERSION = "0.3.0"
    USER_AGENT = f"pkgnest/{VERSION}"

    REGISTRY_URL_NPM = "https://registry.npmjs.org/"
    CACHE_DIR = os.path.join(os.path.expanduser("~"), ".cache", "pkgnest")
    META_SUBDIR = "meta"
    PACKAGES_SUBDIR = "packages"
    PART_SUFFIX = ".part"

    PACKAGE_JSON_FILE = "package.json"
    DEPENDENCY_DIR = "node_modules"

    LOG_FORMAT = "[%(levelname)s] %(message)s"
    LOG_LEVEL_ENV = "PKGNEST_LOG_LEVEL"
    ENV_REGISTRY = "PKGNEST_REGISTRY"
    ENV_CACHE = "PKGNEST_CACHE"

    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    METADATA_TTL_SEC = 300
    RESOLVE_CONCURRENCY = 20
    DOWNLOAD_CONCURRENCY = 10
    DOWNLOAD_ATTEMPTS = 2
    DOWNLOAD_CHUNK_BYTES = 64 * 1024

    ARCHIVE_NAME_PATTERN = r"^[a-zA-Z0-9][a-zA-Z0-9_.\-]*\.tgz$"
    SCOPE_NAME_PATTERN = r"^@[a-zA-Z0-9][a-zA-Z0-9_.\-]*$"

    # Per-version fields dropped from registry documents before they are cached.
    STRIPPED_VERSION_FIELDS = (
        "contributors",
        "devDependencies",
        "readme",
        "_npmOperationalInternal",
    )
