"""tests/conftest.py — Shared fixtures: in-memory connection and dump-tree builders."""
from collections import defaultdict
from pathlib import Path

import bson
import pytest
from bson import json_util

import query_matcher
from restore_session import RestoreOptions, RestoreSession


class FakeConnection:
    """Implements the Connection contract in memory and records every call in order."""

    def __init__(self, writable=True, mongos=False, version="4.4.0"):
        self.data = defaultdict(list)
        self.options = {}
        self.calls = []
        self.errors = {}
        self.command_results = {}
        self.writable = writable
        self.mongos = mongos
        self.version = version

    # helpers for tests
    def seed(self, ns, docs, options=None):
        self.data[ns].extend(docs)
        self.options[ns] = dict(options or {})

    def ops(self, name):
        return [call for call in self.calls if call[0] == name]

    def query(self, ns, filter=None, limit=0, projection=None, sort=None):
        self.calls.append(("query", ns, filter))
        docs = [doc for doc in self.data[ns] if query_matcher.matches(doc, filter)]
        if sort and list(sort)[0][1] < 0:
            docs = list(reversed(docs))
        if limit:
            docs = docs[:limit]
        if projection:
            docs = [{k: doc[k] for k in projection if k in doc} for doc in docs]
        return iter(docs)

    def collection_options(self, ns):
        if ns not in self.options:
            return None
        return dict(self.options[ns])

    def insert(self, ns, doc):
        self.calls.append(("insert", ns, doc))
        self.data[ns].append(doc)
        if not ns.endswith(".system.indexes"):
            self.options.setdefault(ns, {})

    def update(self, ns, filter, doc):
        self.calls.append(("update", ns, filter))
        docs = self.data[ns]
        for i, existing in enumerate(docs):
            if query_matcher.matches(existing, filter):
                docs[i] = doc
                return

    def remove(self, ns, filter):
        self.calls.append(("remove", ns, filter))
        self.data[ns] = [doc for doc in self.data[ns] if not query_matcher.matches(doc, filter)]

    def drop_collection(self, ns):
        self.calls.append(("drop", ns, None))
        self.data.pop(ns, None)
        self.options.pop(ns, None)

    def run_command(self, db_name, command):
        self.calls.append(("command", db_name, command))
        name = next(iter(command))
        ok, result = self.command_results.get(name, (True, {"ok": 1.0}))
        if ok and name == "create":
            self.options[f"{db_name}.{command['create']}"] = {k: v for k, v in command.items() if k != "create"}
        return ok, result

    def _pop_error(self):
        # השגיאה שייכת לחיבור, לא למסד שממנו שואלים
        if not self.errors:
            return None
        return self.errors.pop(next(iter(self.errors)))

    def get_last_error(self, db_name, w=0):
        self.calls.append(("getLastError", db_name, w))
        err = self._pop_error()
        return (err.get("err") or "") if err else ""

    def get_last_error_detailed(self, db_name, w=0):
        self.calls.append(("getLastErrorDetailed", db_name, w))
        err = self._pop_error()
        return {"ok": 1.0, "err": None} if err is None else err

    def is_primary_writable(self):
        return self.writable

    def is_mongos(self):
        return self.mongos

    def server_version(self):
        return self.version

    def close(self):
        self.closed = True


def write_bson(path, docs):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"".join(bson.encode(doc) for doc in docs))
    return path


def write_metadata(path, metadata):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json_util.dumps(metadata), encoding="utf-8")
    return path


@pytest.fixture
def conn():
    return FakeConnection()


@pytest.fixture
def make_session(conn):
    def _make(**options):
        return RestoreSession(RestoreOptions(**options), conn)

    return _make
