"""
Facts Module - atomic arithmetic facts and where to find them.

- fact_store: FactStore protocol, canonical ids, in-memory catalogue
- sql_store: FactStore over the `facts` table
- remote: async batch sources for facts missing locally
"""

from src.facts.fact_store import (
    FactStore,
    InMemoryFactStore,
    build_arithmetic_catalogue,
    fact_from_id,
    fact_id,
    parse_fact_id,
)
from src.facts.remote import ComputedFactSource, HttpFactSource, RemoteFactSource

__all__ = [
    "FactStore",
    "InMemoryFactStore",
    "build_arithmetic_catalogue",
    "fact_from_id",
    "fact_id",
    "parse_fact_id",
    "RemoteFactSource",
    "HttpFactSource",
    "ComputedFactSource",
]
