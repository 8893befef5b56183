"""pkgnest - npm-compatible package installer.

    Returns:
        int: Exit code
"""
import logging
import os
import sys

from constants import Constants, ExitCodes
from errors import (
    ConfigError,
    ExtractionError,
    HashMismatchError,
    ManifestError,
    NoMatchingVersionError,
    PackageManagerError,
    RegistryError,
    UnresolvableCycleError,
    UnsafeArchiveError,
    UnsupportedPlatformError,
    VerificationError,
)
from common.logging_utils import configure_logging, extra_context, is_debug_enabled
from args import parse_args

logger = logging.getLogger(__name__)

_EXIT_CODES = (
    (RegistryError, ExitCodes.CONNECTION_ERROR),
    ((ManifestError, ConfigError), ExitCodes.FILE_ERROR),
    (
        (NoMatchingVersionError, UnresolvableCycleError, UnsupportedPlatformError),
        ExitCodes.RESOLUTION_ERROR,
    ),
    (
        (HashMismatchError, VerificationError, UnsafeArchiveError, ExtractionError),
        ExitCodes.INTEGRITY_ERROR,
    ),
)


def exit_code_for(exc: BaseException) -> ExitCodes:
    """Map an install failure onto the process exit code."""
    for types, code in _EXIT_CODES:
        if isinstance(exc, types):
            return code
    if isinstance(exc, OSError):
        return ExitCodes.FILE_ERROR
    return ExitCodes.RESOLUTION_ERROR


def _setup_logging(args) -> None:
    """Configure logging based on CLI arguments."""
    # Honor CLI --loglevel by passing it to centralized logger via env
    if getattr(args, "LOG_LEVEL", None):
        os.environ[Constants.LOG_LEVEL_ENV] = str(args.LOG_LEVEL).upper()
    configure_logging()

    log_file = getattr(args, "LOG_FILE", None)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
        logging.getLogger().addHandler(file_handler)
        logger.info("Logging to file: %s", log_file)


def run(argv=None) -> int:
    """Parse ``argv``, run the requested action and return the exit code."""
    args = parse_args(argv)
    _setup_logging(args)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(event="function_entry", component="cli", action=args.action),
        )

    # Lazy import keeps --help fast
    from cli_install import run_install  # pylint: disable=import-outside-toplevel

    try:
        run_install(args)
    except (PackageManagerError, OSError) as exc:
        logger.error("%s", exc)
        return exit_code_for(exc).value
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return ExitCodes.FILE_ERROR.value
    except Exception as exc:  # pylint: disable=broad-exception-caught
        logger.exception("Unexpected error: %s", exc)
        return ExitCodes.RESOLUTION_ERROR.value
    return ExitCodes.SUCCESS.value


def main(argv=None):
    """Main function of the program."""
    sys.exit(run(argv))


if __name__ == "__main__":
    main()
