# =============================================================================
# APNs Stream Client -- Package Logger
# =============================================================================

import logging

logger = logging.getLogger("apns_stream")
logger.addHandler(logging.NullHandler())
