"""Cache eligibility policies.

A policy votes on whether the result of a single query may be cached. The
proxy consults one ``CachePolicyChain``; the chain approves a query only
when every registered voter does.

Example:
    >>> chain = CachePolicyChain([TablePolicy(deny={"sessions"})])
    >>> chain.decide("SELECT * FROM users WHERE id = ?", [1])
    True
    >>> chain.decide("SELECT * FROM sessions WHERE token = ?", ["t"])
    False
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from typing import Any

from sqltagcache.tags import extract_tags


class CachePolicy(ABC):
    """Abstract base class for cache policy voters.

    Voters must not keep per-query state; they are asked afresh on every
    read.
    """

    @abstractmethod
    def decide(self, query: str, params: Any) -> bool:
        """Decide whether the query result may be cached.

        Args:
            query: SQL text of the read.
            params: Parameters bound to the query.

        Returns:
            True to allow caching, False to bypass the cache.
        """
        pass

    @property
    def name(self) -> str:
        """Policy name (defaults to class name)."""
        return self.__class__.__name__


class AllowAllPolicy(CachePolicy):
    """Policy that allows caching of every query."""

    def decide(self, query: str, params: Any) -> bool:
        return True


class CallablePolicy(CachePolicy):
    """Adapt a plain ``(query, params) -> bool`` predicate."""

    def __init__(self, func: Callable[[str, Any], bool], name: str | None = None) -> None:
        self._func = func
        self._name = name or getattr(func, "__name__", self.__class__.__name__)

    def decide(self, query: str, params: Any) -> bool:
        return bool(self._func(query, params))

    @property
    def name(self) -> str:
        return self._name


class TablePolicy(CachePolicy):
    """Refuse caching for queries that reference any denied table.

    Tables are found with the same extraction the proxy uses for tags, so
    the heuristic's limitations apply here too.
    """

    def __init__(self, deny: Iterable[str]) -> None:
        self.deny = frozenset(deny)

    def decide(self, query: str, params: Any) -> bool:
        return self.deny.isdisjoint(extract_tags(query))


class CachePolicyChain(CachePolicy):
    """Logical AND over independently registered policy voters.

    Evaluation stops at the first voter returning False. An empty chain
    allows caching.
    """

    def __init__(self, policies: Iterable[CachePolicy] = ()) -> None:
        self._policies: list[CachePolicy] = list(policies)

    def add(self, policy: CachePolicy) -> "CachePolicyChain":
        """Register another voter.

        Returns:
            The chain itself, for chaining calls.
        """
        self._policies.append(policy)
        return self

    @property
    def policies(self) -> list[CachePolicy]:
        return list(self._policies)

    def decide(self, query: str, params: Any) -> bool:
        for policy in self._policies:
            if not policy.decide(query, params):
                return False
        return True

    def __len__(self) -> int:
        return len(self._policies)
