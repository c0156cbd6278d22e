"""tests/test_mongorestore.py — Run sequence, preflight checks and the command line."""
import pytest
from bson.timestamp import Timestamp
from conftest import FakeConnection, write_bson

import mongorestore
from errors import OplogConfigError, PreflightError
from mongorestore import Restore
from oplog_replay import SERVER_OPLOG_NS
from restore_session import RestoreOptions

ITEMS = [{"_id": 1, "name": "pen"}, {"_id": 2, "name": "ink"}]


def _oplog(*secs, ns="mydb.items"):
    return [{"ts": Timestamp(s, 0), "op": "i", "ns": ns, "o": {"_id": s}} for s in secs]


def _run(conn, root, **options):
    return Restore(RestoreOptions(directory=str(root), **options), conn).run()


class TestPreflight:
    def test_missing_directory(self, tmp_path, conn):
        with pytest.raises(PreflightError, match="not found"):
            _run(conn, tmp_path / "nope")

    def test_server_must_be_writable(self, tmp_path):
        with pytest.raises(PreflightError, match="writable"):
            _run(FakeConnection(writable=False), tmp_path)

    def test_full_restore_refused_on_sharded_cluster(self, tmp_path):
        write_bson(tmp_path / "config" / "chunks.bson", [{"_id": 1}])
        conn = FakeConnection(mongos=True)
        with pytest.raises(PreflightError, match="sharded"):
            _run(conn, tmp_path)
        assert conn.ops("insert") == []

    def test_single_database_allowed_on_sharded_cluster(self, tmp_path):
        write_bson(tmp_path / "config" / "chunks.bson", [{"_id": 1}])
        conn = FakeConnection(mongos=True)
        _run(conn, tmp_path / "config", db="config2")
        assert len(conn.ops("insert")) == 1

    def test_oplog_replay_needs_full_restore(self, tmp_path, conn):
        write_bson(tmp_path / "oplog.bson", _oplog(1))
        with pytest.raises(PreflightError, match="full restore"):
            _run(conn, tmp_path, db="mydb", oplog_replay=True)

    def test_oplog_replay_needs_oplog_file(self, tmp_path, conn):
        with pytest.raises(PreflightError, match="No oplog file"):
            _run(conn, tmp_path, oplog_replay=True)

    def test_oplog_replay_needs_recent_server(self, tmp_path):
        write_bson(tmp_path / "oplog.bson", _oplog(1))
        with pytest.raises(PreflightError, match="1.7.4"):
            _run(FakeConnection(version="1.6.5"), tmp_path, oplog_replay=True)

    def test_malformed_oplog_limit(self, tmp_path, conn):
        write_bson(tmp_path / "oplog.bson", _oplog(1))
        with pytest.raises(OplogConfigError, match="Could not parse"):
            _run(conn, tmp_path, oplog_replay=True, oplog_limit="soon")

    def test_limit_not_newer_than_server_fails_before_streaming(self, tmp_path, conn):
        conn.seed(SERVER_OPLOG_NS, [{"ts": Timestamp(500, 0)}])
        write_bson(tmp_path / "oplog.bson", _oplog(600, 700))
        with pytest.raises(OplogConfigError):
            _run(conn, tmp_path, oplog_replay=True, oplog_limit="400")
        assert conn.ops("command") == []

    def test_unsupported_document_filter(self, tmp_path, conn):
        with pytest.raises(PreflightError, match="--filter"):
            _run(conn, tmp_path, document_filter={"name": {"$regex": "p"}})


class TestRun:
    def test_collections_then_oplog(self, tmp_path, conn):
        write_bson(tmp_path / "mydb" / "items.bson", ITEMS)
        write_bson(tmp_path / "oplog.bson", _oplog(10, 20))

        session = _run(conn, tmp_path, oplog_replay=True)

        kinds = [call[0] for call in conn.calls if call[0] in ("insert", "command")]
        assert kinds == ["insert", "insert", "command", "command"]
        assert session.oplog_filter.applied == 2
        assert session.oplog_filter.skipped == 0

    def test_oplog_window_replay(self, tmp_path, conn):
        conn.seed(SERVER_OPLOG_NS, [{"ts": Timestamp(100, 0)}])
        write_bson(tmp_path / "oplog.bson", _oplog(50, 150, 250, 350) + [{"ts": Timestamp(200, 0), "op": "n"}])

        session = _run(conn, tmp_path, oplog_replay=True, oplog_limit="300")

        oplog = session.oplog_filter
        assert (oplog.applied, oplog.skipped, oplog.total) == (2, 2, 4)

    def test_oplog_limit_with_collections_is_fatal(self, tmp_path, conn):
        write_bson(tmp_path / "mydb" / "items.bson", ITEMS)
        write_bson(tmp_path / "oplog.bson", _oplog(10))
        with pytest.raises(OplogConfigError):
            _run(conn, tmp_path, oplog_replay=True, oplog_limit="300")

    def test_final_last_error_is_checked(self, tmp_path, conn, caplog):
        write_bson(tmp_path / "mydb" / "items.bson", ITEMS)
        conn.errors["admin"] = {"ok": 1.0, "err": "something odd"}
        _run(conn, tmp_path)
        assert ("getLastError", "admin", 0) in conn.calls
        assert "something odd" in caplog.text


class TestMain:
    @pytest.fixture
    def fake(self, monkeypatch):
        conn = FakeConnection()
        monkeypatch.setattr(mongorestore, "Connection", lambda uri, w=0: conn)
        return conn

    def test_success_exit_code(self, tmp_path, fake):
        write_bson(tmp_path / "mydb" / "items.bson", ITEMS)
        assert mongorestore.main([str(tmp_path)]) == 0
        assert len(fake.ops("insert")) == 2
        assert fake.closed

    def test_fatal_error_exit_code(self, tmp_path, fake):
        write_bson(tmp_path / "a.bson", ITEMS)
        write_bson(tmp_path / "b.bson", ITEMS)
        assert mongorestore.main([str(tmp_path), "--db", "x", "--collection", "y"]) == 1
        assert fake.ops("insert") == []

    def test_collection_requires_db(self, tmp_path, fake):
        with pytest.raises(SystemExit) as exc:
            mongorestore.main([str(tmp_path), "--collection", "y"])
        assert exc.value.code == 2

    def test_invalid_filter_json(self, tmp_path, fake):
        with pytest.raises(SystemExit):
            mongorestore.main([str(tmp_path), "--filter", "{nope"])

    def test_options_from_args(self):
        args = mongorestore.build_parser().parse_args(
            ["dumpdir", "--drop", "--oplogReplay", "--oplogLimit", "5:1", "--noIndexRestore", "-w", "2", "--filter", '{"a": 1}']
        )
        options = mongorestore.options_from_args(args)
        assert options.directory == "dumpdir"
        assert options.drop and options.oplog_replay
        assert options.oplog_limit == "5:1"
        assert options.restore_options and not options.restore_indexes
        assert options.w == 2
        assert options.document_filter == {"a": 1}

    def test_drop_from_environment_can_be_turned_off(self, monkeypatch):
        monkeypatch.setattr(mongorestore.config, "RESTORE_DROP", True)
        monkeypatch.setattr(mongorestore.config, "RESTORE_KEEP_INDEX_VERSION", True)
        parser = mongorestore.build_parser()

        assert parser.parse_args(["dumpdir"]).drop
        args = parser.parse_args(["dumpdir", "--no-drop", "--no-keepIndexVersion"])
        assert not args.drop
        assert not args.keep_index_version

    def test_invalid_uri_exit_code(self, tmp_path):
        assert mongorestore.main([str(tmp_path), "--uri", "not-a-mongodb-uri"]) == 1

    def test_pending_error_from_another_database_is_reported(self, tmp_path, conn, caplog):
        write_bson(tmp_path / "mydb" / "items.bson", ITEMS)
        conn.errors["mydb"] = {"ok": 1.0, "err": "E11000 duplicate key error"}

        _run(conn, tmp_path)

        assert "E11000" in caplog.text
        assert conn.errors == {}
