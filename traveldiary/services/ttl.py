from __future__ import annotations
from typing import Any, Dict
from traveldiary.core.settings import S

def with_ttl(item: Dict[str, Any], ttl_epoch: int) -> Dict[str, Any]:
    item[S.ddb_ttl_attr] = int(ttl_epoch)
    return item


def is_live(item: Dict[str, Any], now: int) -> bool:
    """TTL deletion lags expiry; reads treat an expired item as absent."""
    ttl = item.get(S.ddb_ttl_attr)
    return ttl is None or int(ttl) > now
