"""
CogCommit constants.

Remote table names and defaults shared across the sync engines.
"""

# Remote tables
COMMITS_TABLE = "cognitive_commits"
SESSIONS_TABLE = "sessions"
TURNS_TABLE = "turns"
VISUALS_TABLE = "visuals"
MACHINES_TABLE = "machines"
USAGE_TABLE = "user_usage"

# Batch size for uploading turns to the remote service
SYNC_BATCH_SIZE = 200

# UUID namespace for deriving stable remote ids from local identifiers
COGCOMMIT_UUID_NAMESPACE = "6ba7b810-9dad-11d1-80b4-00c04fd430c8"

# Watermark used when the local store has never pulled
EPOCH_WATERMARK = "1970-01-01T00:00:00+00:00"

# Commit titles derived from the first prompt are cut to this length
TITLE_MAX_LENGTH = 80
