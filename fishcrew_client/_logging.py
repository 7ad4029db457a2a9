# =============================================================================
# FishCrew Client -- Logging
# =============================================================================

import logging

logger = logging.getLogger("fishcrew_client")
