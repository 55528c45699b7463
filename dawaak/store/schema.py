from dataclasses import dataclass


@dataclass(frozen=True)
class TableSpec:
    name: str
    id_prefix: str
    required: tuple[str, ...] = ()
    unique: tuple[str, ...] = ()


DEFAULT_TABLES: tuple[TableSpec, ...] = (
    TableSpec("users", "user", required=("username",), unique=("username", "email")),
    TableSpec("doctors", "doctor", required=("name",)),
    TableSpec("conversations", "conv"),
    TableSpec("messages", "msg", required=("conversation_id",)),
    TableSpec("medical_tips", "tip", required=("title",)),
    TableSpec("visitors", "visitor"),
    TableSpec("ai_consultations", "ai"),
    TableSpec("support_requests", "support"),
    TableSpec("sessions", "sess", required=("user_id",)),
    TableSpec("audit_log", "audit"),
    TableSpec("error_log", "err"),
    TableSpec("settings", "setting", unique=("key",)),
)

AUDIT_TABLE = "audit_log"
ERROR_TABLE = "error_log"

# Never returned over HTTP, never copied into audit snapshots.
PRIVATE_FIELDS = frozenset({"password_hash"})

# Text fields scanned by the `search` parameter.
SEARCH_FIELDS = ("title", "name", "full_name", "content", "username", "specialty")

# Server-owned fields a caller cannot overwrite.
SERVER_FIELDS = ("id", "created_at", "updated_at")

# Soft-delete state; only delete() sets it.
LIFECYCLE_FIELDS = ("deleted", "deleted_at")
