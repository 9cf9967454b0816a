"""
Configuration
Environment variables (optionally seeded from a local .env) behind a get(key) provider.
Back-end settings resolve in order: <P>_SECRET via Secrets Manager, <P>_DBINFO JSON,
then individual <P>_HOST / <P>_PORT / ... variables.
"""
import json
import os
from dataclasses import dataclass
from typing import Callable, List, Mapping, Optional

import boto3
import structlog
from dotenv import load_dotenv

from biggie.duck import DuckValueError, resolve_int

logger = structlog.get_logger(__name__)

DEFAULT_PORT = 8080
PORT_RANGE = (1024, 65535)
STARTUP_DELAY_RANGE = (1, 5)

SQL_DEFAULT_PORTS = {"mysql": 3306, "postgres": 5432, "redshift": 5439}


class ConfigError(Exception):
    """A back end is not configured, or its configuration is unusable"""


@dataclass
class DatabaseConfig:
    engine: str
    host: str
    port: int
    username: str = ""
    password: str = ""
    dbname: str = ""


@dataclass
class RedisConfig:
    host: str
    port: int = 6379
    tls_enabled: bool = False


@dataclass
class KafkaConfig:
    servers: List[str]
    topic: str
    tls_enabled: bool = False


def fetch_secret(secret_name: str, region: str) -> str:
    """SecretString of an AWS Secrets Manager secret"""
    client = boto3.client("secretsmanager", region_name=region)
    response = client.get_secret_value(SecretId=secret_name)
    if "SecretString" not in response:
        raise ConfigError(f"secret {secret_name} has no string value")
    return response["SecretString"]


def _is_true(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "true"


class Settings:
    """Read-only view over a key/value source (the process environment by default)"""

    def __init__(
        self,
        source: Optional[Mapping[str, str]] = None,
        secret_fetcher: Callable[[str, str], str] = fetch_secret,
    ):
        self._source = os.environ if source is None else source
        self._fetch_secret = secret_fetcher

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        load_dotenv(dotenv_path)
        return cls()

    def get(self, key: str) -> Optional[str]:
        value = self._source.get(key)
        if value is None or value == "":
            return None
        return value

    # ==============================
    # PROCESS SETTINGS
    # ==============================

    @property
    def log_format(self) -> str:
        return self.get("LOG_FORMAT") or "apache"

    @property
    def log_level(self) -> str:
        return self.get("LOG_LEVEL") or "INFO"

    @property
    def html_color(self) -> Optional[str]:
        return self.get("RANDOM_HTML_API_COLOR")

    def port(self) -> int:
        raw = self.get("PORT")
        if raw is None:
            return DEFAULT_PORT
        try:
            return resolve_int(raw, *PORT_RANGE)
        except DuckValueError as exc:
            logger.warning("invalid PORT, using default", value=raw, error=exc.message, port=DEFAULT_PORT)
            return DEFAULT_PORT

    def startup_delay(self) -> int:
        """Seconds to wait before serving; unset or invalid means no delay"""
        raw = self.get("STARTUP_DELAY_SECOND")
        if raw is None:
            return 0
        try:
            return max(resolve_int(raw, *STARTUP_DELAY_RANGE), 0)
        except DuckValueError as exc:
            logger.warning("invalid STARTUP_DELAY_SECOND, defaulting to no delay", value=raw, error=exc.message)
            return 0

    # ==============================
    # BACK ENDS
    # ==============================

    def database(self, engine: str) -> DatabaseConfig:
        prefix = engine.upper()
        default_port = SQL_DEFAULT_PORTS[engine]

        region = self.get("AWS_REGION")
        secret_name = self.get(f"{prefix}_SECRET")
        if region and secret_name:
            try:
                return self._from_json(engine, self._fetch_secret(secret_name, region), default_port)
            except Exception as exc:
                logger.warning("secret lookup failed, trying next source", engine=engine, error=str(exc))

        dbinfo = self.get(f"{prefix}_DBINFO")
        if dbinfo is not None:
            return self._from_json(engine, dbinfo, default_port)

        host = self.get(f"{prefix}_HOST")
        if host is None:
            raise ConfigError(f"{engine} configuration not found")
        return DatabaseConfig(
            engine=engine,
            host=host,
            port=self._port(f"{prefix}_PORT", default_port),
            username=self.get(f"{prefix}_USERNAME") or "",
            password=self.get(f"{prefix}_PASSWORD") or "",
            dbname=self.get(f"{prefix}_DBNAME") or "",
        )

    def redis(self) -> RedisConfig:
        host = self.get("REDIS_HOST")
        if host is None:
            raise ConfigError("redis configuration not found")
        return RedisConfig(
            host=host,
            port=self._port("REDIS_PORT", 6379),
            tls_enabled=_is_true(self.get("REDIS_TLS_ENABLED")),
        )

    def kafka(self) -> KafkaConfig:
        servers = self.get("KAFKA_SERVERS")
        if servers is None:
            raise ConfigError("kafka configuration not found")
        topic = self.get("KAFKA_TOPIC")
        if topic is None:
            raise ConfigError("KAFKA_TOPIC not provided")
        return KafkaConfig(
            servers=[s.strip() for s in servers.split(",") if s.strip()],
            topic=topic,
            tls_enabled=_is_true(self.get("KAFKA_TLS_ENABLED")),
        )

    def _port(self, key: str, default: int) -> int:
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return resolve_int(raw, default, default + 1)
        except DuckValueError as exc:
            raise ConfigError(f"invalid {key}: {exc.message}")

    @staticmethod
    def _from_json(engine: str, text: str, default_port: int) -> DatabaseConfig:
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise ConfigError(f"invalid {engine} credentials json: {exc}")
        if not isinstance(data, dict) or not data.get("host"):
            raise ConfigError(f"{engine} credentials json has no host")
        try:
            port = int(data.get("port") or default_port)
        except (TypeError, ValueError):
            raise ConfigError(f"invalid {engine} port: {data.get('port')!r}")
        return DatabaseConfig(
            engine=engine,
            host=data["host"],
            port=port,
            username=data.get("username", ""),
            password=data.get("password", ""),
            dbname=data.get("dbname", ""),
        )
