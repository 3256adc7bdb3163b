"""
Chat constants (message limits, paging, delivery status order).
"""
from enum import Enum


class MessageStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


# Status only moves forward along this order
STATUS_ORDER = {
    MessageStatus.SENT: 0,
    MessageStatus.DELIVERED: 1,
    MessageStatus.READ: 2,
}

# Statuses a recipient may request
TARGET_STATUSES = (MessageStatus.DELIVERED, MessageStatus.READ)

MESSAGE_MAX_LENGTH = 1000
SEARCH_QUERY_MAX_LENGTH = 100

MESSAGE_PAGE_DEFAULT = 100
MESSAGE_PAGE_MAX = 500

BATCH_STATUS_MAX_IDS = 200

# Compare-and-swap attempts for a status transition
STATUS_UPDATE_ATTEMPTS = 3

# Replaced when a participant name is missing
UNKNOWN_USER_NAME = "Unknown User"
