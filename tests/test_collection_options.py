"""tests/test_collection_options.py — Building and applying create commands from metadata options."""
import pytest

from collection_options import build_create_command, create_collection_with_options, options_same
from errors import CollectionCreateError
from metadata_loader import UNDEFINED
from restore_session import CollectionContext

CONTEXT = CollectionContext("shop", "orders")


class TestBuildCreateCommand:
    def test_create_comes_first_with_target_name(self):
        command = build_create_command(CONTEXT, {"capped": True, "size": 4096, "create": "old_orders"})
        assert list(command) == ["create", "capped", "size"]
        assert command["create"] == "orders"

    def test_undefined_fields_are_dropped(self, caplog):
        command = build_create_command(CONTEXT, {"capped": True, "flags": UNDEFINED})
        assert "flags" not in command
        assert "skipping undefined field: flags" in caplog.text


class TestOptionsSame:
    def test_ignores_create_field(self):
        assert options_same({"create": "orders", "capped": True}, {"capped": True})

    def test_detects_different_value(self):
        assert not options_same({"create": "orders", "size": 10}, {"size": 20})

    def test_detects_extra_server_option(self):
        assert not options_same({"create": "orders"}, {"capped": True})

    def test_detects_missing_server_option(self):
        assert not options_same({"create": "orders", "capped": True}, {})


class TestCreateCollectionWithOptions:
    def test_creates_missing_collection(self, conn):
        assert create_collection_with_options(conn, CONTEXT, {"capped": True, "size": 4096})
        command = conn.ops("command")[0]
        assert command[1] == "shop"
        assert command[2] == {"create": "orders", "capped": True, "size": 4096}

    def test_existing_collection_with_other_options_warns(self, conn, caplog):
        conn.seed("shop.orders", [], options={"capped": False})
        assert not create_collection_with_options(conn, CONTEXT, {"capped": True})
        assert conn.ops("command") == []
        assert "Options in the metadata file will be ignored" in caplog.text

    def test_existing_collection_with_same_options_is_quiet(self, conn, caplog):
        conn.seed("shop.orders", [], options={"capped": True})
        assert not create_collection_with_options(conn, CONTEXT, {"capped": True})
        assert "ignored" not in caplog.text

    def test_create_failure_is_fatal(self, conn):
        conn.command_results["create"] = (False, {"ok": 0.0, "errmsg": "invalid size"})
        with pytest.raises(CollectionCreateError, match="invalid size"):
            create_collection_with_options(conn, CONTEXT, {"capped": True, "size": -1})


def test_nested_undefined_values_are_dropped(caplog):
    options = {"validator": {"age": {"$gt": 1}, "legacy": UNDEFINED}, "tags": ["a", UNDEFINED]}
    command = build_create_command(CONTEXT, options)
    assert command == {"create": CONTEXT.collection, "validator": {"age": {"$gt": 1}}, "tags": ["a"]}
    assert "skipping undefined field: validator.legacy" in caplog.text
