from worklogbot.app import WorkLogBotApp
from worklogbot.logging_setup import setup_logging


def main() -> None:
    logger = setup_logging()
    WorkLogBotApp(logger).run()


if __name__ == "__main__":
    main()
