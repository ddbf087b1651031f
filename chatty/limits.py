"""
Payload size limits used by REST and WebSocket handlers.
"""

# Message payload limits.
MAX_MESSAGE_CHARS = 4000
MAX_ATTACHMENT_URL_CHARS = 2048
MAX_DRAFT_CHARS = MAX_MESSAGE_CHARS

# Search limits.
MIN_SEARCH_TERM_CHARS = 2
MAX_SEARCH_TERM_CHARS = 100

# Smart replies.
MAX_SMART_REPLY_HISTORY = 5
MIN_SMART_REPLIES = 3
MAX_SMART_REPLIES = 5

# WebSocket limits.
MAX_WS_MESSAGES_PER_WINDOW = 30
WS_RATE_WINDOW_SECONDS = 10
