from __future__ import annotations

from typing import List, Optional, Sequence

from ..logging import get_logger
from ..normalize.schema import RemoteClassQuery, RemoteInstance
from ..util.errors import ConfigError, RetrievalError
from .protocols import QueryProtocol

LOG = get_logger(__name__)


class InstanceRetriever:
    """
    Fetch remote management class instances, trying each protocol in order.

    A failed attempt is logged as a warning and the next protocol is tried;
    RetrievalError (chained from the last failure) is raised only when every
    protocol failed for the query.
    """

    def __init__(self, protocols: Sequence[QueryProtocol]) -> None:
        if not protocols:
            raise ConfigError("InstanceRetriever needs at least one query protocol")
        self._protocols = list(protocols)

    @property
    def protocol_names(self) -> List[str]:
        return [p.name for p in self._protocols]

    def fetch(self, class_name: str, host: str) -> List[RemoteInstance]:
        query = RemoteClassQuery(class_name=class_name, host=host)
        last_error: Optional[Exception] = None
        for protocol in self._protocols:
            try:
                instances = protocol.query(query.class_name, query.host)
            except Exception as e:
                last_error = e
                LOG.warning(
                    "Query via %s failed",
                    protocol.name,
                    extra={
                        "host": query.host,
                        "class_name": query.class_name,
                        "protocol": protocol.name,
                        "error": str(e),
                    },
                )
                continue
            LOG.debug(
                "Fetched %d instance(s) via %s",
                len(instances),
                protocol.name,
                extra={"host": query.host, "class_name": query.class_name, "protocol": protocol.name},
            )
            return instances
        raise RetrievalError(
            query.class_name,
            query.host,
            f"all protocols failed ({', '.join(self.protocol_names)}): {last_error}",
        ) from last_error
