import logging

from app.log import configure_logging


def test_http_client_request_lines_stay_below_info() -> None:
    configure_logging("not-a-level")
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("httpcore").level == logging.WARNING
