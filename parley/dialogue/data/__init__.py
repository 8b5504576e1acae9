"""Schema-gated collected data store and pre-extraction."""

from parley.dialogue.data.extractor import EXTRACTION_SCHEMA_NAME, DataExtractor
from parley.dialogue.data.store import DataHook, DataPatchResult, DataStore, is_route_complete

__all__ = [
    "EXTRACTION_SCHEMA_NAME",
    "DataExtractor",
    "DataHook",
    "DataPatchResult",
    "DataStore",
    "is_route_complete",
]
