"""Global configuration: paths, constants, defaults."""

from pathlib import Path

# Default root for the local storage collaborator
DEFAULT_STORAGE_PATH = Path("storage")

# Sub-folder names inside the storage root
REPOS_DIR = "repos"
WORKTREE_DIR = "worktrees"
MIRRORS_DIR = "mirrors"

# Digests are SHA-1 hex strings, like the objects of a git repository
DIGEST_LENGTH = 40
DIGEST_CHARSET = frozenset("0123456789abcdef")

DEFAULT_BRANCH = "main"
DEFAULT_EMAIL_DOMAIN = "gitcore.local"

# Seconds an external comparison may run before it is abandoned
DEFAULT_DIFF_TIMEOUT = 30.0

# Oldest git whose merge-tree can merge without a work tree
MIN_GIT_VERSION = (2, 38)

# Seconds to wait for a branch single-writer region
DEFAULT_LOCK_TIMEOUT = 10.0

# Timezone suffix written into every commit signature
COMMIT_TZ_OFFSET = "+0000"

DEFAULT_COMMIT_LIMIT = 50
DEFAULT_ACTIVITY_LIMIT = 50
