import logging
import os
from pathlib import Path
from typing import List

import user_merge
from collection_options import create_collection_with_options
from dispatcher import stream_file
from errors import DumpLayoutError, OplogConfigError
from index_builder import build_index
from metadata_loader import METADATA_SUFFIX, load_metadata_if_present, metadata_path_for
from oplog_replay import OPLOG_FILE_NAME
from restore_session import CollectionContext, RestoreSession

logger = logging.getLogger(__name__)

DATA_SUFFIXES = (".bson", ".bin")
INDEX_FILE_NAME = "system.indexes.bson"
PROFILE_FILE_NAME = "system.profile.bson"
DEFAULT_DATABASE = "test"


def is_hidden(path: Path) -> bool:
    return path.name.startswith(".")


def is_data_file(path: Path) -> bool:
    return path.name.endswith(DATA_SUFFIXES)


class DirectoryFrame:
    """תיקייה אחת בזמן הסריקה: קבצי אינדקס שנדחו לסוף, והאם נראו קבצי metadata"""

    def __init__(self, path: Path, top_level: bool):
        self.path = path
        self.top_level = top_level
        self.deferred_indexes: List[Path] = []
        self.saw_metadata = False


class DumpWalker:
    """מעבר על עץ הדאמפ ושחזור כל קובץ דאטה ל-namespace המתאים"""

    def __init__(self, session: RestoreSession):
        self.session = session
        self.options = session.options
        self.conn = session.conn

    @property
    def use_db(self) -> bool:
        return bool(self.options.db)

    @property
    def use_coll(self) -> bool:
        return bool(self.options.collection)

    @property
    def oplog_limit_set(self) -> bool:
        oplog = self.session.oplog_filter
        return oplog is not None and oplog.has_window

    def walk(self, root):
        self.drill_down(Path(root), top_level=True)

    def drill_down(self, path: Path, top_level: bool = False):
        logger.debug(f"drillDown: {path}")

        if is_hidden(path) and not top_level:
            return

        if path.is_dir():
            self._drill_directory(DirectoryFrame(path, top_level))
        else:
            self._restore_file(path)

    def _drill_directory(self, frame: DirectoryFrame):
        entries = [Path(entry.path) for entry in os.scandir(frame.path)]
        self._check_layout(frame, entries)

        for entry in entries:
            if entry.name.endswith(METADATA_SUFFIX):
                frame.saw_metadata = True

            # ה-oplog משוחזר בנפרד בסוף הריצה
            if frame.top_level and not self.use_db and entry.name == OPLOG_FILE_NAME:
                continue

            if entry.name == INDEX_FILE_NAME:
                frame.deferred_indexes.append(entry)
            else:
                self.drill_down(entry)

        if not frame.deferred_indexes:
            return
        if frame.saw_metadata:
            # האינדקסים מגיעים מקבצי ה-metadata
            logger.info(f"\tskipping {INDEX_FILE_NAME} in {frame.path}, indexes come from metadata files")
            return
        for index_file in frame.deferred_indexes:
            self.drill_down(index_file)

    def _check_layout(self, frame: DirectoryFrame, entries: List[Path]):
        """בדיקת מבנה התיקייה מול --db/--collection, לפני שנכתב מסמך כלשהו"""
        visible = [entry for entry in entries if not is_hidden(entry)]
        has_subdirectory = any(entry.is_dir() for entry in visible)

        if self.use_db and has_subdirectory:
            raise DumpLayoutError(
                "root directory must be a dump of a single database when specifying a db name with --db"
            )

        if self.use_coll:
            data_entries = [entry for entry in visible if not entry.name.endswith(METADATA_SUFFIX)]
            if has_subdirectory or len(data_entries) > 1:
                raise DumpLayoutError(
                    "root directory must be a dump of a single collection "
                    "when specifying a collection name with --collection"
                )

    def resolve_namespace(self, path: Path) -> CollectionContext:
        db_name = self.options.db or path.parent.name or DEFAULT_DATABASE
        collection = self.options.collection or path.name.rsplit(".", 1)[0]
        return CollectionContext(db_name, collection)

    def _restore_file(self, path: Path):
        if path.name.endswith(METADATA_SUFFIX):
            # נקרא יחד עם קובץ ה-.bson שלו
            return

        if not is_data_file(path):
            logger.error(f"don't know what to do with file [{path}]")
            return

        logger.info(str(path))

        if path.name == PROFILE_FILE_NAME:
            logger.info(f"\t skipping {PROFILE_FILE_NAME}")
            return

        context = self.resolve_namespace(path)

        if self.oplog_limit_set:
            raise OplogConfigError(
                "The oplogLimit option cannot be used if normal databases/collections exist in the dump directory."
            )

        logger.info(f"\tgoing into namespace [{context.ns}]")

        is_users_file = path.name == user_merge.USERS_FILE_NAME
        if self.options.drop:
            if is_users_file:
                user_merge.snapshot_users(self.session, context.ns)
            elif path.name != INDEX_FILE_NAME:
                logger.info("\t dropping")
                self.conn.drop_collection(context.ns)

        metadata = None
        if self.options.restore_options or self.options.restore_indexes:
            metadata = load_metadata_if_present(metadata_path_for(path))

        self.session.enter(context)

        if not self.options.drop and self.conn.collection_options(context.ns) is not None:
            logger.warning(
                f"Restoring to {context.ns} without dropping. Restored data will be inserted "
                "without raising errors; check your server log"
            )

        if self.options.restore_options and metadata and "options" in metadata:
            create_collection_with_options(self.conn, context, metadata["options"])

        stream_file(self.session, path)
        stats = self.session.stats
        if stats.filtered:
            logger.info(f"\t{stats.restored} documents restored, {stats.filtered} filtered out")
        else:
            logger.info(f"\t{stats.restored} documents restored")

        if self.options.drop and is_users_file:
            user_merge.remove_stale_users(self.session, context.ns)

        if self.options.restore_indexes and metadata and "indexes" in metadata:
            for index in metadata["indexes"]:
                build_index(self.session, index, keep_collection_name=False)
