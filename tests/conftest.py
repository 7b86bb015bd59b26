import logging

import pytest

from conformance_viz.logging_config import LOG_NAME


@pytest.fixture(autouse=True)
def reset_app_logger():
    """Undo `configure_logging` so caplog keeps seeing records in later tests."""
    yield
    logger = logging.getLogger(LOG_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
