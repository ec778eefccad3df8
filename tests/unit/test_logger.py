import logging

from channel_sync import settings
from channel_sync.logger import FALLBACK_LOGGERS, UNMAPPED_SKU_LOGGER, setup_logger


def test_fallbacks_collected_in_their_own_file(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "LOG_DIR", tmp_path)
    fallback_loggers = [logging.getLogger(name) for name in FALLBACK_LOGGERS]
    before = [list(lg.handlers) for lg in fallback_loggers]

    app_logger = setup_logger("channel_sync_logger_test")
    try:
        logging.getLogger(UNMAPPED_SKU_LOGGER).warning("Unmapped SKU 'X-1' on Logisp")
        app_logger.info("ordinary message")
        for lg in fallback_loggers:
            for handler in lg.handlers:
                handler.flush()
        for handler in app_logger.handlers:
            handler.flush()

        assert "Unmapped SKU 'X-1'" in (tmp_path / "fallbacks.log").read_text(encoding="utf-8")
        assert "ordinary message" in (tmp_path / "app.log").read_text(encoding="utf-8")
        assert "ordinary message" not in (tmp_path / "fallbacks.log").read_text(encoding="utf-8")
    finally:
        for handler in app_logger.handlers[:]:
            app_logger.removeHandler(handler)
            handler.close()
        for lg, handlers in zip(fallback_loggers, before):
            for handler in lg.handlers[:]:
                if handler not in handlers:
                    lg.removeHandler(handler)
                    handler.close()


def test_setup_is_idempotent(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "LOG_DIR", tmp_path)
    app_logger = setup_logger("channel_sync_logger_idempotent")
    try:
        count = len(app_logger.handlers)
        assert setup_logger("channel_sync_logger_idempotent") is app_logger
        assert len(app_logger.handlers) == count
    finally:
        for handler in app_logger.handlers[:]:
            app_logger.removeHandler(handler)
            handler.close()
        for name in FALLBACK_LOGGERS:
            lg = logging.getLogger(name)
            for handler in lg.handlers[:]:
                if str(tmp_path) in getattr(handler, "baseFilename", ""):
                    lg.removeHandler(handler)
                    handler.close()
