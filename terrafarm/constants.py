"""Centralized constants for terrafarm.

File names, environment variables, defaults and timings shared by the CLI
and the detached monitor process.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Final

APP: Final = "terrafarm"
DESCRIPTION: Final = "Utility for working with terraform based rpmbuilder farm"

# =============================================================================
# Filesystem
# =============================================================================

DEFAULT_DATA_DIR: Final = Path.home() / ".terrafarm" / "terradata"
GLOBAL_CONFIG_PATH: Final = Path.home() / ".terrafarm" / "config.toml"
PROJECT_CONFIG_NAME: Final = ".terrafarm.toml"

TERRAFORM_STATE_FILE: Final = "terraform.tfstate"
FARM_STATE_FILE: Final = ".farm-state"
MONITOR_STATE_FILE: Final = ".monitor-state"
MONITOR_LOG_FILE: Final = "monitor.log"

BUILDER_TEMPLATE_PATTERN: Final = "builder*.tf"

# =============================================================================
# Environment Variables
# =============================================================================


class EnvVar(StrEnum):
    """Environment variables read by the preferences resolver."""

    DATA = "TERRAFARM_DATA"
    TTL = "TERRAFARM_TTL"
    MAX_WAIT = "TERRAFARM_MAX_WAIT"
    OUTPUT = "TERRAFARM_OUTPUT"
    TEMPLATE = "TERRAFARM_TEMPLATE"
    TOKEN = "TERRAFARM_TOKEN"
    KEY = "TERRAFARM_KEY"
    REGION = "TERRAFARM_REGION"
    NODE_SIZE = "TERRAFARM_NODE_SIZE"
    USER = "TERRAFARM_USER"
    PASSWORD = "TERRAFARM_PASSWORD"


# =============================================================================
# Preference Defaults
# =============================================================================

DEFAULT_TTL_MINUTES: Final = 240
DEFAULT_REGION: Final = "fra1"
DEFAULT_NODE_SIZE: Final = "16gb"
DEFAULT_USER: Final = "builder"
DEFAULT_TEMPLATE: Final = "c6-multiarch"
GENERATED_PASSWORD_LENGTH: Final = 18

TOKEN_LENGTH: Final = 64

# =============================================================================
# Terraform
# =============================================================================

TERRAFORM_BINARY: Final = "terraform"
DROPLET_RESOURCE_TYPE: Final = "digitalocean_droplet"
PASSWORD_HASH_ROUNDS: Final = 5000

# =============================================================================
# Build Nodes
# =============================================================================

ADMIN_USER: Final = "root"
SSH_PORT: Final = 22
SSH_TIMEOUT_SECONDS: Final = 1.0
PROBE_CONCURRENCY: Final = 8
BUILD_LOCK_COMMAND: Final = "stat -c '%Y' /home/{user}/.buildlock"

# =============================================================================
# Monitor
# =============================================================================

POLL_INTERVAL_SECONDS: Final = 60
MONITOR_STARTUP_TIMEOUT: Final = 5.0
MONITOR_STOP_TIMEOUT: Final = 5.0
LOG_SEPARATOR: Final = "-" * 88

# =============================================================================
# DigitalOcean
# =============================================================================

FARM_DROPLET_PREFIX: Final = "terrafarm"
