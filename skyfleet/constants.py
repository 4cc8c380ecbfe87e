"""Shared constants for the provisioner.

Centralizes timeout values, intervals, and remote paths to keep the
lifecycle and the configuration defaults consistent.
"""

from __future__ import annotations

# =============================================================================
# Timeouts (seconds)
# =============================================================================

DEFAULT_CREATE_TIMEOUT = 300.0
"""Maximum time to wait for a droplet to become active."""

DEFAULT_INIT_SCRIPT_TIMEOUT = 600.0
"""Maximum time to wait for the init script to report an exit status."""

DEFAULT_SSH_CONNECT_TIMEOUT = 10.0
"""Per-attempt SSH connect timeout."""

# =============================================================================
# Polling / Retries
# =============================================================================

DEFAULT_POLL_INTERVAL = 10.0
"""Interval between droplet status checks."""

DEFAULT_SSH_CONNECT_ATTEMPTS = 5
"""SSH connection attempts before the droplet is marked failed."""

DEFAULT_SSH_RETRY_DELAY = 2.0
"""Delay between SSH connection attempts."""

# =============================================================================
# Ports
# =============================================================================

DEFAULT_SSH_PORT = 22
"""Default SSH port."""

DEFAULT_CONTAINER_SSH_PORT = 22000
"""First SSH port handed out to containers on a droplet."""

# =============================================================================
# Remote paths
# =============================================================================

INIT_SCRIPT_PATH = "/tmp/init.sh"
INIT_SCRIPT_MODE = 0o700

INIT_MARKER = "~/.hudson-run-init"
"""Written after a successful init script run; its presence skips the script."""
