import logging

logger = logging.getLogger(__name__)


def setup_logging(level=logging.INFO):
    """Configure basic logging"""
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    return logging.getLogger('pyifg')


def output_console(name: str, current: int, total: int):
    """Progress callback printing `name: current / total` through the pyifg logger."""
    logger.info(f'{name}: {current} / {total}')


def output_none(name: str, current: int, total: int):
    pass
