"""Fixed names, URL templates, and environment variable names."""

from __future__ import annotations

DEFAULT_COMMIT_HASH = "3355912bf0052a7514ffb462e4a6655afb94347f"

CLI_BINARY_NAME = "rain-orderbook-cli"
CLI_ARCHIVE_NAME = "rain-orderbook-cli.tar.gz"

CONSTANTS_URL_TEMPLATE = (
    "https://raw.githubusercontent.com/rainlanguage/rain.orderbook/"
    "{commit}/packages/webapp/src/lib/constants.ts"
)
CLI_ARCHIVE_URL_TEMPLATE = (
    "https://raw.githubusercontent.com/rainlanguage/rain.orderbook/"
    "{commit}/crates/cli/bin/rain-orderbook-cli.tar.gz"
)
RELEASE_DOWNLOAD_URL_TEMPLATE = (
    "https://github.com/findolor/local_db_remote/releases/latest/download/{file}"
)

# First non-blank wins
API_TOKEN_ENV_VARS = (
    "RAIN_API_TOKEN",
    "RAIN_ORDERBOOK_API_TOKEN",
    "HYPERRPC_API_TOKEN",
    "HYPERLANE_API_TOKEN",
)
COMMIT_HASH_ENV_VAR = "COMMIT_HASH"
SETTINGS_YAML_ENV_VAR = "SETTINGS_YAML_URL"
CLI_BINARY_URL_ENV_VAR = "CLI_BINARY_URL"
SYNC_CHAIN_IDS_ENV_VAR = "SYNC_CHAIN_IDS"

DB_SUFFIX = ".db"
DUMP_SUFFIX = ".db.tar.gz"
TEMP_SUFFIX = ".tmp"
MANIFEST_NAME = "manifest.yaml"
SYNC_STATUS_TABLE = "sync_status"

USER_AGENT = "localdb-sync/1.0"


def format_number(value: int) -> str:
    """Group digits with commas, e.g. 1234567 -> '1,234,567'."""
    return f"{value:,}"
