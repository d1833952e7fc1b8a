import logging

logger = logging.getLogger("astral_projection")


def setup_logger(verbose: bool = False, format: str = "%(message)s") -> None:
    """
    Configures the project logger to write to the console.

    Any handler installed by a previous call is removed first, so this can be
    called again once the CLI knows whether verbose output was requested.

    Args:
        verbose (bool): Log DEBUG records when True, INFO otherwise.
        format (str): The logging format string.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    ch = logging.StreamHandler()
    ch.setLevel(level)
    ch.setFormatter(logging.Formatter(format))

    logger.addHandler(ch)


setup_logger()
