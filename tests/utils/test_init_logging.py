import logging

from meshboot.logging.log import init_logging


def test_init_logging_writes_full_trace(tmp_path):
    logger, run_id, log_path = init_logging(base_dir=tmp_path, name="meshboot-test", label="phase1")
    try:
        assert log_path.parent == tmp_path
        assert run_id[:8] in log_path.name
        logger.debug("[docker] $ docker info")
        for h in logger.handlers:
            h.flush()
        text = log_path.read_text()
        assert f"run_id={run_id}" in text
        assert "[docker] $ docker info" in text

        levels = sorted(h.level for h in logger.handlers)
        assert levels == [logging.DEBUG, logging.INFO]
    finally:
        for h in list(logger.handlers):
            h.close()
            logger.removeHandler(h)


def test_unwritable_dir_falls_back_to_home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    blocker = tmp_path / "file"
    blocker.write_text("")
    logger, _, log_path = init_logging(base_dir=blocker / "logs", name="meshboot-test")
    try:
        assert log_path.parent == tmp_path / "home" / ".meshboot" / "logs"
    finally:
        for h in list(logger.handlers):
            h.close()
            logger.removeHandler(h)
