#!/usr/bin/env python3
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from bson import json_util
from pymongo.errors import PyMongoError

import config
import query_matcher
from connection import Connection
from dispatcher import stream_file
from dump_walker import DumpWalker
from errors import PreflightError, RestoreError
from oplog_replay import OPLOG_FILE_NAME, OplogReplayFilter, version_supports_replay
from restore_session import OPLOG_REPLAY, RestoreOptions, RestoreSession

logger = logging.getLogger(__name__)

SHARDING_CONFIG_DIRECTORY = "config"


class Restore:
    """ריצת שחזור אחת: בדיקות מקדימות, מעבר על הדאמפ, ואז הרצת ה-oplog אם התבקשה"""

    def __init__(self, options: RestoreOptions, conn: Connection):
        self.options = options
        self.conn = conn
        self.root = Path(options.directory)
        self.session = RestoreSession(options, conn)

    def preflight(self):
        options = self.options

        if not self.root.exists():
            raise PreflightError(f"Dump directory not found: {self.root}")

        # בודקים שבאמת מדברים עם שרת שאפשר לכתוב אליו
        if not self.conn.is_primary_writable():
            raise PreflightError("Target server is not a writable primary")

        if not options.db and self.conn.is_mongos() and (self.root / SHARDING_CONFIG_DIRECTORY).exists():
            raise PreflightError("Cannot do a full restore on a sharded system")

        if options.document_filter:
            try:
                query_matcher.validate(options.document_filter)
            except query_matcher.UnsupportedQueryError as e:
                raise PreflightError(f"Invalid --filter: {e}") from e

        if options.oplog_replay:
            self._configure_oplog_replay()

    def _configure_oplog_replay(self):
        options = self.options
        if options.db:
            raise PreflightError("Can only replay oplog on full restore")

        if not (self.root / OPLOG_FILE_NAME).exists():
            raise PreflightError("No oplog file to replay. Make sure you run mongodump with --oplog.")

        version = self.conn.server_version()
        if not version_supports_replay(version):
            raise PreflightError(f"Can only replay oplog to server version >= 1.7.4 (server is {version})")

        oplog = OplogReplayFilter()
        try:
            oplog.configure(self.conn, options.oplog_limit, options.oplog_filter)
        except query_matcher.UnsupportedQueryError as e:
            raise PreflightError(f"Invalid --oplogFilter: {e}") from e
        self.session.oplog_filter = oplog

    def run(self) -> RestoreSession:
        self.preflight()

        DumpWalker(self.session).walk(self.root)

        err = self.conn.get_last_error(self.options.db or "admin")
        if err:
            logger.error(err)

        if self.options.oplog_replay:
            self.replay_oplog()
        return self.session

    def replay_oplog(self):
        logger.info("\t Replaying oplog")
        oplog = self.session.oplog_filter
        self.session.enter(OPLOG_REPLAY)
        oplog.begin()
        stream_file(self.session, self.root / OPLOG_FILE_NAME)
        oplog.finish()


def _json_argument(value: str):
    try:
        parsed = json_util.loads(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise argparse.ArgumentTypeError("expected a JSON document")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mongo-restore", description="Restore a MongoDB dump directory into a live server"
    )
    parser.add_argument("directory", nargs="?", default=config.DUMP_DIRECTORY, help="dump directory or .bson file")
    parser.add_argument("--uri", default=config.MONGODB_URI, help="MongoDB connection string")
    parser.add_argument("-d", "--db", default="", help="database to restore into")
    parser.add_argument("-c", "--collection", default="", help="collection to restore into (needs --db)")
    parser.add_argument(
        "--drop", action=argparse.BooleanOptionalAction, default=config.RESTORE_DROP, help="drop each collection before import"
    )
    parser.add_argument("--oplogReplay", dest="oplog_replay", action="store_true", help="replay oplog.bson after the restore")
    parser.add_argument("--oplogLimit", dest="oplog_limit", default="", help="only replay entries older than seconds[:inc]")
    parser.add_argument("--oplogFilter", dest="oplog_filter", type=_json_argument, help="extra query oplog entries must match")
    parser.add_argument("--filter", dest="document_filter", type=_json_argument, help="only restore documents matching this query")
    parser.add_argument("--noOptionsRestore", dest="restore_options", action="store_false", help="don't restore collection options")
    parser.add_argument("--noIndexRestore", dest="restore_indexes", action="store_false", help="don't restore indexes")
    parser.add_argument(
        "--keepIndexVersion",
        dest="keep_index_version",
        action=argparse.BooleanOptionalAction,
        default=config.RESTORE_KEEP_INDEX_VERSION,
        help="don't upgrade indexes to the newest version",
    )
    parser.add_argument("-w", "--w", dest="w", type=int, default=config.RESTORE_WRITE_CONCERN, help="replicas to wait for after each write")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def options_from_args(args: argparse.Namespace) -> RestoreOptions:
    return RestoreOptions(
        directory=args.directory,
        db=args.db,
        collection=args.collection,
        drop=args.drop,
        oplog_replay=args.oplog_replay,
        oplog_limit=args.oplog_limit,
        oplog_filter=args.oplog_filter,
        document_filter=args.document_filter,
        restore_options=args.restore_options,
        restore_indexes=args.restore_indexes,
        keep_index_version=args.keep_index_version,
        w=args.w,
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.collection and not args.db:
        parser.error("--collection requires --db")

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=logging.DEBUG if args.verbose else config.LOG_LEVEL,
    )
    logging.getLogger("pymongo").setLevel(logging.WARNING)

    options = options_from_args(args)
    conn = None
    try:
        conn = Connection(args.uri, w=options.w)
        Restore(options, conn).run()
    except RestoreError as e:
        logger.error(f"❌ {e}")
        return 1
    except PyMongoError as e:
        logger.error(f"❌ MongoDB error: {e}")
        return 1
    finally:
        if conn is not None:
            conn.close()

    logger.info("✅ restore complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
