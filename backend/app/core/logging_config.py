import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str = "INFO"):
    """ルートロガーにストリームハンドラを 1 つだけ設定する"""
    root = logging.getLogger()
    root.setLevel(level.upper())
    if any(getattr(h, "_university_exam", False) for h in root.handlers):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._university_exam = True
    root.addHandler(handler)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
