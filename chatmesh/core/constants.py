"""
System-Wide Constants for the Anonymous Chat Mesh

All magic numbers and configuration defaults centralized here.
"""

from typing import Final

# =============================================================================
# TIME UNITS
# =============================================================================
SECOND_MS: Final[int] = 1000
MINUTE_S: Final[int] = 60

# =============================================================================
# KEYSPACE
# =============================================================================
SESSION_KEY_PREFIX: Final[str] = "session:"
ROOM_KEY_PREFIX: Final[str] = "room:"
PROFILE_KEY_PREFIX: Final[str] = "profile:"
MOOD_HISTORY_KEY_PREFIX: Final[str] = "mood_history:"
MOOD_STATS_KEY: Final[str] = "mood_stats"

# =============================================================================
# ROOMS
# =============================================================================
ROOM_MIN_CAPACITY: Final[int] = 2
ROOM_MAX_CAPACITY: Final[int] = 50
ROOM_NAME_MAX_LENGTH: Final[int] = 64

# =============================================================================
# INACTIVITY
# =============================================================================
INACTIVITY_TIMEOUT_S: Final[int] = 30 * MINUTE_S
SWEEP_INTERVAL_S: Final[int] = 0  # 0 disables the background sweep

# =============================================================================
# MATCHMAKING & CAS RETRY
# =============================================================================
MATCH_MAX_ATTEMPTS: Final[int] = 8
CAS_MAX_ATTEMPTS: Final[int] = 8
CAS_BACKOFF_BASE_MS: Final[int] = 5
CAS_BACKOFF_MAX_MS: Final[int] = 200

# =============================================================================
# STORE RETRY (transient unavailability)
# =============================================================================
STORE_RETRY_MAX_ATTEMPTS: Final[int] = 3
STORE_RETRY_BASE_MS: Final[int] = 50
STORE_RETRY_MAX_MS: Final[int] = 1000

# =============================================================================
# PROFILES & MOODS
# =============================================================================
MOOD_HISTORY_LIMIT: Final[int] = 30
NICKNAME_MAX_LENGTH: Final[int] = 32
BIO_MAX_LENGTH: Final[int] = 280

# =============================================================================
# SCANS
# =============================================================================
SCAN_BATCH_SIZE: Final[int] = 500
