# =============================================================================
# APNs Stream Client -- Protocol Constants
# =============================================================================
#
# Values follow the binary provider interface ("enhanced" format, command 2).
# =============================================================================

# -- Gateways -----------------------------------------------------------------

GATEWAY_HOST = "gateway.push.apple.com"
GATEWAY_SANDBOX_HOST = "gateway.sandbox.push.apple.com"
GATEWAY_PORT = 2195

FEEDBACK_HOST = "feedback.push.apple.com"
FEEDBACK_SANDBOX_HOST = "feedback.sandbox.push.apple.com"
FEEDBACK_PORT = 2196

# -- Frame layout -------------------------------------------------------------

FRAME_TYPE_NOTIFICATION = 2
FRAME_HEADER_SIZE = 5  # u8 type + u32 item section length
ITEM_HEADER_SIZE = 3  # u8 type + u16 length

ITEM_DEVICE_TOKEN = 1
ITEM_PAYLOAD = 2
ITEM_IDENTIFIER = 3

DEVICE_TOKEN_SIZE = 32
IDENTIFIER_SIZE = 4
MAX_IDENTIFIER = 0xFFFFFFFF

ERROR_COMMAND = 8
ERROR_FRAME_SIZE = 6

# 0 never names a real notification; used when the failing id is unknown
UNKNOWN_IDENTIFIER = 0

# -- Feedback -----------------------------------------------------------------

FEEDBACK_HEADER_SIZE = 6  # u32 timestamp + u16 token length

# -- Limits -------------------------------------------------------------------

MAX_PAYLOAD_SIZE = 2048  # bytes
IN_FLIGHT_CAPACITY = 1000

# -- Timing (seconds) --------------------------------------------------------

CONNECTION_TIMEOUT = 10.0
DRAIN_TIMEOUT = 5.0

# -- Reconnection -------------------------------------------------------------

RECONNECT_BASE_DELAY = 1.0
RECONNECT_MAX_DELAY = 30.0
RECONNECT_MAX_ATTEMPTS = -1  # -1 = infinite
RECONNECT_FACTOR = 2.0
RECONNECT_ABSOLUTE_CAP = 300.0  # 5 minutes

# -- Circuit breaker -----------------------------------------------------------

CIRCUIT_BREAKER_THRESHOLD = 5
CIRCUIT_BREAKER_TIMEOUT = 60.0
CIRCUIT_BREAKER_SUCCESS_THRESHOLD = 1
