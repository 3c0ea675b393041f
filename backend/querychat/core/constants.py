"""
Centralized constants for chat sessions, streaming turns and charts.

Change storage keys, limits and user-facing phrases here instead of scattering
literals across the controller, the stores and the routes.
"""
from querychat.config import settings

# Key-value storage keys (must match what existing dashboards wrote)
CHAT_SESSIONS_KEY = "chatSessions"
SAVED_VISUALIZATIONS_KEY = "savedVisualizations"
ACCESS_TOKEN_KEY = "accessToken"

# Session limits (env-driven, see config.Settings)
MAX_MESSAGES_PER_CHAT = settings.max_messages_per_chat
MAX_SESSIONS = settings.max_sessions
CONTEXT_WINDOW = settings.context_window
# One turn writes a user message and one assistant message
TURN_MESSAGE_COUNT = 2

DEFAULT_SESSION_TITLE = "New Chat"
TITLE_MAX_LENGTH = 40

# Transient status texts
STATUS_PROCESSING = "Processing your query..."
STATUS_EXECUTING_SQL = "Executing SQL query..."
STATUS_DEFAULT = "Processing..."

# Assistant texts
MSG_CONNECT_DATABASE_FIRST = "Please connect to a database first before asking questions."
MSG_NO_RESPONSE = "I couldn't generate a response for that question. Try rephrasing it."
MSG_NO_RESULTS = "The query returned no results."
MSG_UNKNOWN_ERROR = "An unknown error occurred while processing your query."

# Charts
DEFAULT_CHART_TYPE = "bar"
TABLE_MAX_ROWS = 10
TABLE_MAX_COLUMNS = 6
TABLE_CELL_MAX_LENGTH = 100
# Shown first when a result has too many columns to display
TABLE_PRIORITY_COLUMNS = (
    "name",
    "email",
    "company_name",
    "role_title",
    "start_date",
    "end_date",
)
