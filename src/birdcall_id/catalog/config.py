"""Configuration constants for the species catalog."""

import os

# Storage Configuration
DEFAULT_CATALOG_PATH = os.path.expanduser("~/.birdcall-id/species.json")
DEFAULT_DATABASE_PATH = os.path.expanduser("~/.birdcall-id/species.db")
DEFAULT_WAL_MODE = True

# Database Schema Version
SCHEMA_VERSION = 1
