"""
Definition Store — persistence boundary for chain definitions and prompt
templates.

``DefinitionStore`` is the interface the engine consumes.
``InMemoryDefinitionStore`` is the reference implementation used by tests,
the CLI and embedding applications that keep definitions in process.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Optional, Protocol, runtime_checkable
from uuid import uuid4

from promptchain.config import PromptChainConfig
from promptchain.exceptions import ChainNotFound, TemplateNotFound
from promptchain.types import ChainDefinition, PromptTemplate

from .validator import ChainValidator

logger = logging.getLogger(__name__)


@runtime_checkable
class DefinitionStore(Protocol):
    """Async interface for chain and template persistence.

    Lookups of unknown ids raise ChainNotFound / TemplateNotFound.
    """

    async def get_template(self, template_id: str) -> PromptTemplate: ...

    async def list_templates(self) -> list[PromptTemplate]: ...

    async def save_template(self, template: PromptTemplate) -> PromptTemplate: ...

    async def save_chain(self, definition: ChainDefinition) -> ChainDefinition: ...

    async def load_chain(self, chain_id: str) -> ChainDefinition: ...

    async def list_chains(self) -> list[ChainDefinition]: ...

    async def delete_chain(self, chain_id: str) -> None: ...


class InMemoryDefinitionStore:
    """
    Keeps chain definitions and templates in process memory.

    Saving validates the chain (hard errors raise ChainValidationError) and
    bumps ``version`` whenever nodes, edges, variables or error handling
    differ from the stored copy.  Every stored version is kept so callers
    can inspect history or roll back.

    Args:
        validator: ChainValidator instance.  A default instance is created
                   if not supplied.
        config:    PromptChainConfig instance.  A default instance is created
                   if not supplied.
        templates: Optional templates to preload.
    """

    def __init__(
        self,
        validator: Optional[ChainValidator] = None,
        config: Optional[PromptChainConfig] = None,
        templates: Optional[list[PromptTemplate]] = None,
    ) -> None:
        self._validator = validator or ChainValidator()
        self._config = config or PromptChainConfig()
        self._chains: dict[str, ChainDefinition] = {}
        # chain_id → ordered list of stored versions
        self._history: dict[str, list[ChainDefinition]] = {}
        self._templates: dict[str, PromptTemplate] = {t.id: t for t in templates or []}

    # ── Templates ─────────────────────────────────────────────────────────────

    async def get_template(self, template_id: str) -> PromptTemplate:
        template = self._templates.get(template_id)
        if template is None:
            raise TemplateNotFound(
                f"Prompt template '{template_id}' not found.", template_id=template_id
            )
        return template

    async def list_templates(self) -> list[PromptTemplate]:
        return sorted(self._templates.values(), key=lambda t: t.name or t.id)

    async def save_template(self, template: PromptTemplate) -> PromptTemplate:
        existing = self._templates.get(template.id)
        if existing is not None and existing.template != template.template:
            template = template.model_copy(update={"version": existing.version + 1})
        self._templates[template.id] = template
        return template

    # ── Chains ────────────────────────────────────────────────────────────────

    async def save_chain(self, definition: ChainDefinition) -> ChainDefinition:
        """
        Validate and store a chain, creating or updating it.

        Returns:
            The stored definition (version bumped on structural change).

        Raises:
            ChainValidationError: if the chain graph is structurally invalid.
        """
        self._validator.validate_or_raise(
            definition, max_nodes=self._config.max_chain_nodes
        )

        existing = self._chains.get(definition.id)
        now = datetime.now(tz=timezone.utc)
        if existing is None:
            stored = definition.model_copy(update={"updated_at": now})
        else:
            updates = {"updated_at": now, "created_at": existing.created_at}
            if _structure(existing) != _structure(definition):
                updates["version"] = existing.version + 1
            else:
                updates["version"] = existing.version
            stored = definition.model_copy(update=updates)

        self._chains[stored.id] = stored
        history = self._history.setdefault(stored.id, [])
        if not history or history[-1].version < stored.version:
            history.append(stored)
        else:
            history[-1] = stored
        logger.debug(f"[Store] saved chain {stored.id} v{stored.version}")
        return stored

    async def load_chain(self, chain_id: str) -> ChainDefinition:
        """
        Load a chain by ID.

        Raises:
            ChainNotFound: if no chain with this ID is stored.
        """
        chain = self._chains.get(chain_id)
        if chain is None:
            raise ChainNotFound(f"Chain '{chain_id}' not found.", chain_id=chain_id)
        return chain

    async def list_chains(self) -> list[ChainDefinition]:
        """Return all chains, most recently updated first."""
        return sorted(self._chains.values(), key=lambda c: c.updated_at, reverse=True)

    async def delete_chain(self, chain_id: str) -> None:
        if self._chains.pop(chain_id, None) is None:
            raise ChainNotFound(f"Chain '{chain_id}' not found.", chain_id=chain_id)
        self._history.pop(chain_id, None)

    # ── Versioning ────────────────────────────────────────────────────────────

    async def get_version_history(self, chain_id: str) -> list[ChainDefinition]:
        """Return all stored versions of a chain, oldest first."""
        await self.load_chain(chain_id)
        return list(self._history.get(chain_id, []))

    async def rollback(self, chain_id: str, target_version: int) -> ChainDefinition:
        """
        Store a new version whose graph matches target_version.

        The rollback itself becomes a new version (not a destructive rewrite).

        Raises:
            ChainNotFound: if target_version does not exist in history.
        """
        history = await self.get_version_history(chain_id)
        target = next((v for v in history if v.version == target_version), None)
        if target is None:
            raise ChainNotFound(
                f"Version {target_version} not found for chain '{chain_id}'.",
                chain_id=chain_id,
            )
        current = await self.load_chain(chain_id)
        restored = current.model_copy(update={
            "nodes": target.nodes,
            "edges": target.edges,
            "global_variables": target.global_variables,
            "entry_node_id": target.entry_node_id,
            "error_handling": target.error_handling,
        })
        return await self.save_chain(restored)

    # ── Import / export ───────────────────────────────────────────────────────

    async def export_json(self, chain_id: str) -> str:
        """Serialize a chain to a JSON string that import_json accepts."""
        chain = await self.load_chain(chain_id)
        return chain.model_dump_json(indent=2)

    async def import_json(self, json_str: str, new_id: bool = True) -> ChainDefinition:
        """
        Deserialize and store a chain from a JSON string.

        Args:
            json_str: Output of export_json (or any ChainDefinition JSON).
            new_id:   Store under a fresh chain ID (version reset to 1) so the
                      import never overwrites an existing chain.

        Raises:
            ChainValidationError: if the parsed chain graph is invalid.
            ValueError: if the JSON is malformed.
        """
        data = json.loads(json_str)
        chain = ChainDefinition.model_validate(data)
        if new_id:
            chain = chain.model_copy(update={"id": str(uuid4()), "version": 1})
        return await self.save_chain(chain)


def _structure(chain: ChainDefinition) -> tuple:
    return (
        chain.nodes,
        chain.edges,
        chain.global_variables,
        chain.entry_node_id,
        chain.error_handling,
    )
