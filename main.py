import sys

from autebook.cli import parse_cli_args, run_cli
from autebook.config_loader import config
from autebook.logger_config import logger, setup_logger


def main():
    args = parse_cli_args()

    try:
        setup_logger(
            log_level=config.get("log.level", "INFO"),
            log_dir=config.get("log.dir", "./logs"),
            retention=config.get("log.retention", 7),
        )
    except Exception as e:
        print(f"Failed to initialise logging: {e}")
        sys.exit(1)

    logger.debug(f"--- autebook {args.command} ---")

    try:
        sys.exit(run_cli(args))
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
