import logging

import pytest

from era5_precip.logging_utils import setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def test_setup_logging_writes_file(tmp_path, restore_root_logger):
    log_file = tmp_path / "era5.log"
    setup_logging("warning", log_file=log_file)
    assert restore_root_logger.level == logging.WARNING
    assert logging.getLogger("rasterio").level == logging.WARNING

    logging.getLogger("era5_precip.test").warning("window skipped")
    for handler in restore_root_logger.handlers:
        handler.flush()
    assert "era5_precip.test - WARNING - window skipped" in log_file.read_text()


def test_verbose_forces_debug(restore_root_logger):
    setup_logging("ERROR", verbose=True)
    assert restore_root_logger.level == logging.DEBUG
