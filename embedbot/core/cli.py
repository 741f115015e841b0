"""
Handles command-line interface parsing and actions.
"""
import argparse
import sys

from embedbot import __version__
from embedbot.config import load_config, validate_required_env
from embedbot.exceptions import ConfigurationError
from embedbot.utils.logging import get_logger

_HIDDEN = ("TOKEN", "SECRET", "ACCESS_KEY")


def parse_arguments(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Discord embed enhancement bot")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument("--config-check", action="store_true", help="Validate configuration and exit.")
    parser.add_argument("--version", action="store_true", help="Show version info and exit.")
    return parser.parse_args(argv)


def show_version_info():
    """Display version and system information."""
    print(f"EmbedBot - Version {__version__}")
    print(f"Python Version: {sys.version}")


def validate_configuration_only():
    """Validate configuration and exit."""
    logger = get_logger(__name__)
    try:
        logger.info("--- Running Configuration-Only Validation ---", extra={"subsys": "core", "event": "config_check_start"})
        validate_required_env()
        config = load_config(force_reload=True)
        logger.info("Configuration validation successful. Active settings:", extra={"subsys": "core", "event": "config_valid_start"})

        for key, value in config.items():
            if any(marker in key for marker in _HIDDEN) and value:
                value = "********"
            logger.info(f"  • {key}: {value}", extra={"subsys": "core", "event": "config_valid"})

    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}", exc_info=True, extra={"subsys": "core", "event": "config_fail"})
        sys.exit(1)
