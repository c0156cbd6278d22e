import os
from dotenv import load_dotenv

load_dotenv()

# MongoDB
MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017/")
SERVER_SELECTION_TIMEOUT_MS = int(os.getenv("SERVER_SELECTION_TIMEOUT_MS", "30000"))

# תיקיית הדאמפ כברירת מחדל
DUMP_DIRECTORY = os.getenv("DUMP_DIRECTORY", "dump")

# הגדרות שחזור
RESTORE_WRITE_CONCERN = int(os.getenv("RESTORE_WRITE_CONCERN", "0"))  # 0 = בלי המתנה לרפליקות
RESTORE_DROP = os.getenv("RESTORE_DROP", "false").lower() == "true"
RESTORE_KEEP_INDEX_VERSION = os.getenv("RESTORE_KEEP_INDEX_VERSION", "false").lower() == "true"

# הגדרות כלליות
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
