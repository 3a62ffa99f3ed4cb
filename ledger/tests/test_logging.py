import json
import logging
import sys

import pytest
from loguru import logger

from ledger.logging import configure_logging


@pytest.fixture
def restore_logger():
    yield
    logger.remove()
    logger.add(sys.stderr)
    logging.basicConfig(handlers=[logging.StreamHandler()], level=logging.WARNING, force=True)


def test_json_output_carries_bound_context(capsys, restore_logger):
    configure_logging(service_name="points-ledger", environment="development", version="1.0.0", json_output=True)

    logger.bind(transaction_id=7, user_id=4).info("Transaction created")

    line = capsys.readouterr().out.strip().splitlines()[-1]
    payload = json.loads(line)
    assert payload["message"] == "Transaction created"
    assert payload["level"] == "info"
    assert payload["service"] == "points-ledger"
    assert payload["transaction_id"] == 7


def test_stdlib_records_are_bridged(capsys, restore_logger):
    configure_logging(service_name="points-ledger", environment="development", version="1.0.0", json_output=True)

    logging.getLogger("uvicorn.error").warning("port %s in use", 8000)

    payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert payload["message"] == "port 8000 in use"
    assert payload["level"] == "warning"
