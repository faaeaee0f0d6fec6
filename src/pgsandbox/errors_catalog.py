"""Actionable error catalog for pgsandbox."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "missing_credentials": {
        "what": "Cannot build a connection string: {detail}",
        "next": "Set `postgres_user`/`postgres_password` in the service config or "
        "export PGSANDBOX_POSTGRES_POSTGRES_USER and PGSANDBOX_POSTGRES_POSTGRES_PASSWORD.",
    },
    "missing_scope": {
        "what": "No network instance or configuration for the {scope} scope.",
        "next": "Check the proposed network mappings include a {scope} instance.",
    },
    "database_not_ready": {
        "what": "Database did not accept queries after {attempts} attempts.",
        "next": "Inspect `docker logs {container}` and check the host port is free.",
    },
    "dirty_schema": {
        "what": "Schema is dirty at version {version}: {detail}",
        "next": "Fix the migration, repair the schema by hand, then force the version "
        "or edit the migration file to trigger a re-apply.",
    },
    "uncommitted_transaction": {
        "what": "Transaction issue detected: {table} exists (versions: {versions}) but no "
        "application tables were visible after waiting {waited}s.",
        "next": "Check for sessions left `idle in transaction` by the migration driver.",
    },
    "migration_incomplete": {
        "what": "No tables found in database after waiting {waited}s ({attempts} attempts): "
        "migrations failed or are taking too long to commit.",
        "next": "Run the migration tool by hand and inspect its output.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
