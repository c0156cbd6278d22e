class RestoreError(Exception):
    """שגיאה קטלנית - עוצרת את כל השחזור"""


class PreflightError(RestoreError):
    """השרת או הדאמפ לא מתאימים לשחזור המבוקש"""


class DumpLayoutError(RestoreError):
    """מבנה התיקייה לא תואם ל-db/collection שהוגדרו"""


class OplogConfigError(RestoreError):
    """הגדרת חלון ה-oplog לא תקינה"""


class MetadataReadError(RestoreError):
    """קובץ metadata קיים אבל לא ניתן לקרוא אותו"""


class CollectionCreateError(RestoreError):
    pass


class IndexBuildError(RestoreError):
    pass
