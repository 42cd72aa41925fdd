import structlog

from combattracker.backend.logging import get_logger, request_context


def test_request_context_binds_values_only_inside_block() -> None:
    with request_context(method="POST", path="/api/encounters/enc-1/next-turn"):
        bound = structlog.contextvars.get_contextvars()
        assert bound["method"] == "POST"
        assert bound["path"] == "/api/encounters/enc-1/next-turn"

    assert "path" not in structlog.contextvars.get_contextvars()


def test_get_logger_supports_key_value_events() -> None:
    logger = get_logger(__name__)

    assert callable(logger.info)
    assert callable(logger.debug)
