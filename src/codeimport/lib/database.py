import os
from pathlib import PurePosixPath
from urllib.parse import quote_plus, unquote_plus, urlparse

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker


def get_engine(url: str | None = None):
    """Create a SQLAlchemy engine. Defaults to in-memory SQLite when url is None."""
    url = normalize_db_url(url or "sqlite:///:memory:")
    # pool_pre_ping avoids handing a dead MySQL connection to the lock primitive
    return create_engine(url, echo=False, future=True, pool_pre_ping=True)


def normalize_db_url(value: str) -> str:
    """Normalize different DB connection representations into a SQLAlchemy URL.

    - A URL (contains '://') is returned with its credentials percent-encoded.
    - A semicolon-separated MySQL-style string (key=val;...) becomes a
      mysql+pymysql URL.
    - Anything that looks like a filesystem path becomes a sqlite URL.
    """
    if not value:
        return value

    if "://" in value:
        parsed = urlparse(value)
        if not (parsed.username or parsed.password):
            return value
        # unquote first so already-encoded credentials are not double-encoded
        userinfo = quote_plus(unquote_plus(parsed.username or ""))
        if parsed.password is not None:
            userinfo = f"{userinfo}:{quote_plus(unquote_plus(parsed.password))}"
        hostport = parsed.hostname or ""
        if parsed.port:
            hostport = f"{hostport}:{parsed.port}"
        return parsed._replace(netloc=f"{userinfo}@{hostport}").geturl()

    if "=" in value and ";" in value:
        kv = {}
        for part in value.split(";"):
            if "=" in part:
                k, v = part.split("=", 1)
                kv[k.strip().lower()] = v.strip()

        host = kv.get("server") or kv.get("host")
        user = kv.get("user") or kv.get("uid") or kv.get("username")
        password = kv.get("password") or kv.get("pwd") or ""
        port = kv.get("port")
        database = kv.get("database") or kv.get("initial catalog") or kv.get("dbname")
        if host and user and database:
            port_part = f":{port}" if port else ""
            return f"mysql+pymysql://{quote_plus(user)}:{quote_plus(password)}@{host}{port_part}/{database}"

    v = value.replace("\\", "/")
    if os.path.exists(v) or "/" in v or v.endswith(".db"):
        return f"sqlite:///{v}"

    return value


def store_instance_id(engine) -> str:
    """Identifier of the logical database an engine points at.

    MySQL named locks are server-wide, so this is folded into lock names to
    keep two databases on one server from blocking each other.
    """
    url = make_url(engine.url)
    database = url.database or ""
    if url.get_backend_name() == "sqlite":
        if not database or database == ":memory:":
            return "memory"
        return PurePosixPath(database.replace("\\", "/")).stem or "sqlite"
    return database or (url.host or "default")


def get_sessionmaker(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine):
    """Create all tables using metadata from the models package."""
    # Import models lazily to avoid circular imports at package import time
    from codeimport.models import Base

    Base.metadata.create_all(engine)


class InMemoryAdapter:
    """Lightweight in-memory DB adapter for tests.

    Usage:
        adapter = InMemoryAdapter()
        session = adapter.session()
    """

    def __init__(self):
        self.engine = get_engine("sqlite:///:memory:")
        self.Session = get_sessionmaker(self.engine)
        init_db(self.engine)

    def session(self):
        return self.Session()
