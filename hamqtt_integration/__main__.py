"""Entry point for running integrations as a module.

Usage:
    python -m hamqtt_integration -s mypkg.startup:configure
    python -m hamqtt_integration -s mypkg.startup:configure -c /path/to/config.yaml
    python -m hamqtt_integration --help
"""

import argparse
import asyncio
import importlib
import sys
from pathlib import Path

from . import __version__
from .app import Startup, run_app
from .config import create_default_config, print_env_help, get_config
from .errors import IntegrationError


def load_startup(path: str) -> Startup:
    """Resolve a ``module:callable`` import path.

    Raises:
        ValueError: If the path is malformed or the target is not callable
        ImportError: If the module cannot be imported
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Startup must look like 'module:callable', got '{path}'")

    module = importlib.import_module(module_name)
    try:
        target = getattr(module, attr)
    except AttributeError:
        raise ValueError(f"Module '{module_name}' has no attribute '{attr}'") from None
    if not callable(target):
        raise ValueError(f"Startup '{path}' is not callable")
    return target


def main() -> int:
    """Main entry point.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    parser = argparse.ArgumentParser(
        prog="hamqtt-integration",
        description="Run Home Assistant MQTT integrations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Environment variables:
  MQTT_NODE_ID=weather MQTT_HOST=192.168.1.100 MQTT_USERNAME=user MQTT_PASSWORD=pass \\
      hamqtt-integration -s weather.startup:configure

  # Config file:
  hamqtt-integration -c /etc/hamqtt/config.yaml
  hamqtt-integration --generate-config > config.yaml
        """,
    )

    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to configuration file (optional if using env vars)",
    )
    parser.add_argument(
        "-s", "--startup",
        default=None,
        help="Startup callable registering integrations (module:callable)",
    )
    parser.add_argument(
        "-v", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--generate-config",
        action="store_true",
        help="Print default configuration and exit",
    )
    parser.add_argument(
        "--env-help",
        action="store_true",
        help="Print environment variable help and exit",
    )

    args = parser.parse_args()

    if args.generate_config:
        print(create_default_config())
        return 0

    if args.env_help:
        print(print_env_help())
        return 0

    if args.config and not Path(args.config).exists():
        print(f"Error: Configuration file not found: {args.config}", file=sys.stderr)
        return 1

    try:
        config = get_config(args.config)
        config.mqtt.require()
    except IntegrationError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("\nFor environment variable help: hamqtt-integration --env-help", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1

    startup_path = args.startup or config.startup
    if not startup_path:
        print("Error: No startup given (use --startup or INTEGRATION_STARTUP)", file=sys.stderr)
        return 1

    try:
        startup = load_startup(startup_path)
    except (ImportError, ValueError) as e:
        print(f"Error: cannot load startup '{startup_path}': {e}", file=sys.stderr)
        return 1

    try:
        asyncio.run(run_app(config, startup))
        return 0
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 0
    except IntegrationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
