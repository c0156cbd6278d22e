from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from connection import Connection


@dataclass(frozen=True)
class RestoreOptions:
    """כל הפרמטרים של ריצת שחזור אחת. לא משתנה במהלך הריצה"""

    directory: str = "dump"
    db: str = ""
    collection: str = ""
    drop: bool = False
    oplog_replay: bool = False
    oplog_limit: str = ""
    oplog_filter: Optional[Dict[str, Any]] = None
    document_filter: Optional[Dict[str, Any]] = None
    restore_options: bool = True
    restore_indexes: bool = True
    keep_index_version: bool = False
    w: int = 0

    @property
    def scope(self) -> "RestoreScope":
        if self.collection:
            return SingleCollection(self.db, self.collection)
        if self.db:
            return SingleDatabase(self.db)
        return FULL


# ===== RestoreScope =====


@dataclass(frozen=True)
class Full:
    pass


@dataclass(frozen=True)
class SingleDatabase:
    db: str


@dataclass(frozen=True)
class SingleCollection:
    db: str
    collection: str


FULL = Full()
RestoreScope = Union[Full, SingleDatabase, SingleCollection]


# ===== NamespaceContext =====


@dataclass(frozen=True)
class CollectionContext:
    db: str
    collection: str

    @property
    def ns(self) -> str:
        return f"{self.db}.{self.collection}"


@dataclass(frozen=True)
class OplogReplayContext:
    pass


OPLOG_REPLAY = OplogReplayContext()
NamespaceContext = Union[CollectionContext, OplogReplayContext]


@dataclass
class FileStats:
    """ספירת מסמכים לקובץ דאטה אחד"""

    restored: int = 0
    filtered: int = 0


@dataclass
class RestoreSession:
    """המצב המשותף של ריצה: החיבור, ההקשר הנוכחי, ה-snapshot של המשתמשים והמונים של ה-oplog"""

    options: RestoreOptions
    conn: Connection
    context: Optional[NamespaceContext] = None
    user_snapshot: set = field(default_factory=set)
    oplog_filter: Any = None
    stats: FileStats = field(default_factory=FileStats)

    def enter(self, context: NamespaceContext):
        self.context = context
        self.stats = FileStats()
