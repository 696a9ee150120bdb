"""promptchain.chains — chain definition graph helpers, validation, and storage."""

from .loader import load_chain_file, load_templates_file
from .store import DefinitionStore, InMemoryDefinitionStore
from .validator import ChainValidator

__all__ = [
    "ChainValidator",
    "DefinitionStore",
    "InMemoryDefinitionStore",
    "load_chain_file",
    "load_templates_file",
]
