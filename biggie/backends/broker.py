"""
Kafka back end (producer side only)
"""
import random
from typing import Any, Optional, Tuple

from kafka import KafkaProducer

from biggie.backends.base import Backend
from biggie.config import KafkaConfig

LOREM_WORDS = (
    "lorem ipsum dolor sit amet consectetur adipiscing elit sed do eiusmod tempor "
    "incididunt ut labore et dolore magna aliqua enim ad minim veniam quis nostrud "
    "exercitation ullamco laboris nisi aliquip ex ea commodo consequat duis aute irure "
    "in reprehenderit voluptate velit esse cillum fugiat nulla pariatur excepteur sint "
    "occaecat cupidatat non proident sunt culpa qui officia deserunt mollit anim id est laborum"
).split()


def lorem_ipsum(min_words: int = 10, max_words: int = 20) -> str:
    """Filler message body of min_words..max_words words"""
    count = random.randint(min_words, max_words)
    return " ".join(random.choice(LOREM_WORDS) for _ in range(count))


class KafkaBackend(Backend):
    name = "kafka"
    error_code = "KAFKA_ERROR"

    def __init__(self, config: KafkaConfig):
        self.config = config

    def connect(self) -> Any:
        options = {
            "bootstrap_servers": self.config.servers,
            "request_timeout_ms": 10_000,
        }
        if self.config.tls_enabled:
            options["security_protocol"] = "SSL"
            options["ssl_check_hostname"] = False
        return KafkaProducer(**options)

    def ping(self, resource: Any) -> None:
        resource.partitions_for(self.config.topic)

    def read(self, resource: Any) -> Any:
        return resource.partitions_for(self.config.topic)

    def write(self, resource: Any, payload: Optional[Tuple[str, str]] = None) -> Any:
        """payload is (key, message)"""
        key, message = payload if payload is not None else ("key-0", lorem_ipsum())
        return resource.send(self.config.topic, key=key.encode("utf-8"), value=message.encode("utf-8"))

    def flush(self, resource: Any) -> None:
        resource.flush(timeout=10)

    def close(self, resource: Any) -> None:
        resource.close(timeout=5)

    def describe(self) -> str:
        return "kafka://" + ",".join(self.config.servers)
