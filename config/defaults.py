SQL_CONFIG_PATH = "sql.yml"
TOKEN_PATH = "token"

ASSIGNMENTS_TABLE = "channel_assignments"

DEFAULT_DB_DRIVER = "sqlite3"
DEFAULT_SERVER_PROTOCOL = "tcp"
DEFAULT_SERVER_HOST = "127.0.0.1"
DEFAULT_SERVER_PORT = 3306

DEFAULT_OPEN_CATEGORY_NAME = "Open Tickets"
DEFAULT_CLOSED_CATEGORY_NAME = "Closed Tickets"

# retain: keep the row so a re-join reuses the categories
# delete: drop the row when the bot leaves the guild
LEFT_POLICIES = {"retain", "delete"}
DEFAULT_LEFT_POLICY = "retain"
DEFAULT_COMPENSATE_ORPHANS = True
