import sqlite3
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from core import database
from detection.dom import DomNode


class MockConnectionWrapper:
    """A wrapper around a real sqlite3 connection that intercepts the close() call."""
    def __init__(self, real_conn):
        self._real_conn = real_conn

    def close(self):
        # Application code closes its connection; the test keeps it open
        pass

    def __getattr__(self, name):
        return getattr(self._real_conn, name)


@pytest.fixture
def db_connection():
    """
    Patches `sqlite3.connect` so every connection opened by the code under
    test is the same in-memory database.
    """
    real_conn = sqlite3.connect(":memory:", check_same_thread=False)
    mock_conn_wrapper = MockConnectionWrapper(real_conn)

    with patch('core.database.sqlite3.connect', return_value=mock_conn_wrapper):
        database.setup_database(":memory:")
        yield mock_conn_wrapper

    real_conn.close()


def el(tag, attrs=None, children=None, shadow=None, rect=None, style=None, text="", node_id=None, **props):
    """Builds one element entry in the shape produced by the page snapshot script."""
    return {
        "tag": tag,
        "nodeId": node_id,
        "attributes": dict(attrs or {}),
        "properties": props,
        "style": dict(style or {}),
        "rect": dict(rect or {}),
        "text": text,
        "children": list(children or []),
        "shadowRoot": {"tag": "#shadow-root", "children": list(shadow)} if shadow is not None else None,
    }


def document(*children):
    return DomNode.from_snapshot({"tag": "#document", "children": list(children)})


@pytest.fixture
def dom():
    """Builders for snapshot trees: ``dom.el(...)`` entries, ``dom.document(...)`` roots."""
    return SimpleNamespace(el=el, document=document)


@pytest.fixture
def app_config():
    """Minimal stand-in for AppConfig with fast, deterministic settings."""
    return SimpleNamespace(
        session=SimpleNamespace(store_backend="memory", db_file=":memory:", state_file="state.json"),
        detection=SimpleNamespace(
            max_shadow_depth=32,
            visual_proximity_threshold=60.0,
            max_form_elements=100,
            rules_path=None,
        ),
        retry=SimpleNamespace(max_attempts=3, retry_delay_ms=0),
        batch=SimpleNamespace(max_concurrent_batches=8),
        automation=SimpleNamespace(
            browser_headless=True,
            navigation_timeout_ms=1000,
            typing_min_delay_ms=0,
            typing_max_delay_ms=0,
            url_key="url",
            default_url=None,
            form_fallback_enabled=True,
            captcha_solver_enabled=True,
        ),
    )
