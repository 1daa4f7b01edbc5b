# backend/focusbank/core/logging.py

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """
    앱 시작 시 1회 호출. uvicorn 로거와 같은 핸들러를 쓰도록 root에 붙인다.
    """
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level.upper())
    logging.getLogger("focusbank").setLevel(level.upper())
