"""
Redis back end
"""
from typing import Any, Optional

import redis

from biggie.backends.base import Backend
from biggie.config import RedisConfig

STRESS_KEY = "stress_key"
STRESS_VALUE = "stress"


class RedisBackend(Backend):
    name = "redis"
    error_code = "REDIS_ERROR"

    def __init__(self, config: RedisConfig):
        self.config = config

    def connect(self) -> Any:
        options = {
            "host": self.config.host,
            "port": self.config.port,
            "socket_connect_timeout": 5,
            "socket_timeout": 5,
            "decode_responses": True,
        }
        if self.config.tls_enabled:
            options["ssl"] = True
            options["ssl_cert_reqs"] = None
        return redis.Redis(**options)

    def ping(self, resource: Any) -> None:
        resource.ping()

    def read(self, resource: Any) -> Any:
        # a missing key is a normal miss, not an error
        return resource.get(STRESS_KEY)

    def write(self, resource: Any, payload: Optional[Any] = None) -> Any:
        return resource.set(STRESS_KEY, payload if payload is not None else STRESS_VALUE)

    def close(self, resource: Any) -> None:
        resource.close()

    def describe(self) -> str:
        return f"redis://{self.config.host}:{self.config.port}"
