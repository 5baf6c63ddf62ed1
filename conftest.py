import structlog
from pytest import fixture


@fixture
def logger():
    return structlog.get_logger()
