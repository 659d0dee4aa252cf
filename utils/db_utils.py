import os
import ssl
from urllib.parse import parse_qsl, urlsplit, urlunsplit

from utils.get_env import (
    env_flag,
    get_allow_sqlite_fallback_env,
    get_app_data_directory_env,
    get_database_url_env,
)


ASYNC_DRIVERS = {
    "sqlite://": "sqlite+aiosqlite://",
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
}


def _to_async_driver(database_url: str) -> str:
    for prefix, async_prefix in ASYNC_DRIVERS.items():
        if database_url.startswith(prefix):
            return database_url.replace(prefix, async_prefix, 1)
    return database_url


def get_database_url_and_connect_args() -> tuple[str, dict]:
    database_url = get_database_url_env()
    if not database_url:
        if not env_flag(get_allow_sqlite_fallback_env()):
            raise RuntimeError(
                "No database URL configured. Set DATABASE_URL or ALLOW_SQLITE_FALLBACK=true."
            )
        app_data_dir = get_app_data_directory_env() or "/tmp/crypto-payments"
        os.makedirs(app_data_dir, exist_ok=True)
        database_url = "sqlite:///" + os.path.join(app_data_dir, "payments.db")

    database_url = _to_async_driver(database_url)

    try:
        split_result = urlsplit(database_url)
    except ValueError as exc:
        raise RuntimeError(
            "Database URL is malformed. URL-encode special characters in the password "
            "(@, :, /, ?, #, [, ]) before putting it in DATABASE_URL."
        ) from exc

    connect_args = {}
    if split_result.scheme.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        return database_url, connect_args

    if not split_result.hostname:
        raise RuntimeError("Database URL is invalid: hostname is missing.")

    # asyncpg does not understand libpq query options; translate sslmode and drop the query.
    if split_result.query:
        for key, value in parse_qsl(split_result.query, keep_blank_values=True):
            if key.lower() == "sslmode" and value.lower() != "disable":
                connect_args["ssl"] = ssl.create_default_context()
        database_url = urlunsplit(
            (
                split_result.scheme,
                split_result.netloc,
                split_result.path,
                "",
                split_result.fragment,
            )
        )

    return database_url, connect_args
