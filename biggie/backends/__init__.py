"""
Back-end registry
A factory takes Settings and returns a Backend, raising ConfigError when unconfigured.
"""
from typing import Callable, Dict

from biggie.backends.base import Backend, BackendError
from biggie.backends.broker import KafkaBackend, lorem_ipsum
from biggie.backends.cache import RedisBackend
from biggie.backends.sql import SqlBackend
from biggie.config import Settings

BackendFactory = Callable[[Settings], Backend]

SQL_ENGINES = ("mysql", "postgres", "redshift")


def _sql_factory(engine: str) -> BackendFactory:
    def factory(settings: Settings) -> Backend:
        return SqlBackend(settings.database(engine))
    return factory


def default_factories() -> Dict[str, BackendFactory]:
    factories: Dict[str, BackendFactory] = {engine: _sql_factory(engine) for engine in SQL_ENGINES}
    factories["redis"] = lambda settings: RedisBackend(settings.redis())
    factories["kafka"] = lambda settings: KafkaBackend(settings.kafka())
    return factories


__all__ = [
    "Backend",
    "BackendError",
    "BackendFactory",
    "KafkaBackend",
    "RedisBackend",
    "SqlBackend",
    "SQL_ENGINES",
    "default_factories",
    "lorem_ipsum",
]
