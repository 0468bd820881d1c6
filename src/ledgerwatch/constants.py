"""Core constants for ledgerwatch."""

from enum import Enum


class DomainEventKind(str, Enum):
    """Normalized application-level signals derived from ledger events."""

    WALLET_BALANCE_CHANGED = "wallet_balance_changed"
    SUPPLY_CHANGED = "supply_changed"
    ORDER_BOOK_CHANGED = "order_book_changed"
    ORDER_EXECUTED = "order_executed"


class ConnectionState(str, Enum):
    """Lifecycle of the event stream channel."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionType(str, Enum):
    """What the client currently relies on for fresh chain state."""

    WS = "ws"
    POLLING = "polling"
    NONE = "none"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


# ============================================
# Ledger Event Vocabulary
# ============================================

TRANSFER_EVENT_TYPE = "transfer"
BURN_EVENT_MARKER = "burn"
COINBASE_EVENT_MARKER = "coinbase"
ORDER_BOOK_EVENT_NAMESPACE = "bze.tradebin."
ORDER_EXECUTED_EVENT_MARKER = "OrderExecutedEvent"

MARKET_ID_ATTRIBUTE = "market_id"
AMOUNT_ATTRIBUTE = "amount"

# ============================================
# Subscriptions
# ============================================

BLOCK_SUBSCRIPTION_ID = 1
TX_RECIPIENT_SUBSCRIPTION_ID = 2
TX_SENDER_SUBSCRIPTION_ID = 3

BLOCK_QUERY = "tm.event='NewBlock'"
TX_RECIPIENT_QUERY = "tm.event='Tx' AND transfer.recipient='{address}'"
TX_SENDER_QUERY = "tm.event='Tx' AND transfer.sender='{address}'"

# Close reason used when we tear down our own channel
INTENTIONAL_CLOSE_CODE = 1000
INTENTIONAL_CLOSE_REASON = "Reconnecting"
SHUTDOWN_CLOSE_REASON = "Shutting down"

# ============================================
# Default Values
# ============================================

DEFAULT_NATIVE_DENOM = "ubze"
DEFAULT_USD_STABLE_DENOM = "ibc/6490A7EAB61059BFC1CDDEB05917DD70BDF3A611654162A1A47DB930D40D8AF4"
DEFAULT_LP_DENOM_PREFIX = "ulp_"
DEFAULT_ASSET_DECIMALS = 6
LP_ASSET_DECIMALS = 12

DEFAULT_RECONNECT_BASE_DELAY = 1.0
DEFAULT_RECONNECT_MAX_DELAY = 30.0
DEFAULT_MAX_RECONNECT_ATTEMPTS = 10

DEFAULT_POLLING_INTERVAL = 10.0

# ============================================
# Application Constants
# ============================================

APP_NAME = "ledgerwatch"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
