"""Argument parsing functionality for pkgnest."""

import argparse
from constants import Constants

def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    parser = argparse.ArgumentParser(
        prog="pkgnest",
        description=(
            "pkgnest - npm-compatible package installer"
        ),
        add_help=True,
    )
    parser.add_argument("--version",
                        action="version",
                        version=f"%(prog)s {Constants.VERSION}")

    subparsers = parser.add_subparsers(dest="action", metavar="ACTION")
    subparsers.required = True

    install = subparsers.add_parser("install",
                                    aliases=["i"],
                                    help="Install packages into node_modules")
    install.add_argument("SPECS",
                         help="Packages to install, e.g. lodash or lodash@^4. "
                              "Defaults to the dependencies of ./package.json",
                         nargs="*",
                         metavar="name[@constraint]")
    install.add_argument("--prefix",
                         dest="PREFIX",
                         help="Project directory (default: current directory)",
                         action="store",
                         type=str,
                         default=".")
    install.add_argument("--registry",
                         dest="REGISTRY",
                         help="Registry base URL",
                         action="store",
                         type=str)
    install.add_argument("--cache-dir",
                         dest="CACHE_DIR",
                         help="Cache directory for metadata and archives",
                         action="store",
                         type=str)
    install.add_argument("-c", "--config",
                         dest="CONFIG",
                         help="Path to configuration file (YAML, YML, or JSON)",
                         action="store",
                         type=str)
    install.add_argument("--omit-dev",
                         dest="OMIT_DEV",
                         help="Skip devDependencies when installing from package.json",
                         action="store_true")
    install.add_argument("--dry-run",
                         dest="DRY_RUN",
                         help="Resolve and print the tree without downloading anything",
                         action="store_true")
    install.add_argument("--loglevel",
                         dest="LOG_LEVEL",
                         help="Set the logging level",
                         action="store",
                         type=str,
                         choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                         default='INFO')
    install.add_argument("--logfile",
                         dest="LOG_FILE",
                         help="Log output file",
                         action="store",
                         type=str)
    install.add_argument("-q", "--quiet",
                         dest="QUIET",
                         help="Do not print the install tree.",
                         action="store_true")

    return parser.parse_args(argv)
