"""
test_import_safety.py — Import and layering checks.

Verifies that:
  1. Every service, model and API module imports cleanly without a database
     connection.
  2. The resolution pipeline modules stay pure: no database session, no
     provider I/O, no HTTP layer.
  3. The logging configuration emits JSON with the session extras.

No database, network, or external services are required.
"""

import importlib
import inspect
import json
import logging

import pytest


_SERVICE_MODULES = [
    "app.config",
    "app.services.formula_engine",
    "app.services.diagnostics",
    "app.services.catalog_engine",
    "app.services.quantity_engine",
    "app.services.product_selector",
    "app.services.line_item_engine",
    "app.services.protection_engine",
    "app.services.enclosure_engine",
    "app.services.pricing_engine",
    "app.services.configurator_engine",
    "app.services.configurator_session",
    "app.services.providers",
    "app.services.logging_config",
    "app.services.middleware",
]

_DB_AND_API_MODULES = [
    "app.models.configurator_schema",
    "app.models.orm_models",
    "app.db",
    "app.db.catalog_repository",
    "app.api.configurator_routes",
    "app.main",
]

# Pipeline stages must be pure computation over the cached catalog
_PURE_PIPELINE_MODULES = [
    "app.services.formula_engine",
    "app.services.quantity_engine",
    "app.services.product_selector",
    "app.services.line_item_engine",
    "app.services.protection_engine",
    "app.services.enclosure_engine",
    "app.services.pricing_engine",
    "app.services.configurator_engine",
]


class TestModuleImports:

    @pytest.mark.parametrize("module_path", _SERVICE_MODULES)
    def test_service_module_imports(self, module_path):
        mod = importlib.import_module(module_path)
        assert mod is not None, f"Module {module_path} is None after import"

    @pytest.mark.parametrize("module_path", _DB_AND_API_MODULES)
    def test_db_and_api_modules_import_without_connection(self, module_path):
        """Creating the async engine must not open a connection."""
        mod = importlib.import_module(module_path)
        assert mod is not None


class TestPipelinePurity:

    @pytest.mark.parametrize("module_path", _PURE_PIPELINE_MODULES)
    def test_no_db_or_http_dependency(self, module_path):
        src = inspect.getsource(importlib.import_module(module_path))
        for forbidden in ("AsyncSession", "get_db", "app.db", "fastapi", "await "):
            assert forbidden not in src, f"{module_path} must not reference {forbidden!r}"


class TestJsonLogging:

    def test_extras_in_json_output(self):
        from app.services.logging_config import JSONFormatter
        record = logging.LogRecord("elektro-session", logging.INFO, __file__, 1, "recalculated", None, None)
        record.session_id = "abc"
        record.duration_ms = 1.5
        entry = json.loads(JSONFormatter().format(record))
        assert entry["logger"] == "elektro-session"
        assert entry["message"] == "recalculated"
        assert entry["session_id"] == "abc"
        assert entry["duration_ms"] == 1.5
        assert "instance_id" not in entry
        assert entry["source"].endswith(":1")

    def test_text_format_appends_session(self):
        from app.services.logging_config import TEXT_FORMAT, SessionTextFormatter
        record = logging.LogRecord("elektro-session", logging.INFO, __file__, 1, "recalculated", None, None)
        formatter = SessionTextFormatter(TEXT_FORMAT)
        assert not formatter.format(record).endswith("]")
        record.session_id = "abc"
        assert formatter.format(record).endswith("[session abc]")
