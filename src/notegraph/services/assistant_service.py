"""Retrieval-augmented question answering over the knowledge base."""
import asyncio
import logging
from typing import Optional

from notegraph.config import DEFAULT_TOP_K
from notegraph.models.schema import AskResult, NoteRef
from notegraph.services.context_assembler import ContextAssembler, render_prompt
from notegraph.services.generation_client import GenerationClient

logger = logging.getLogger(__name__)


class AssistantService:
    """Assembles context, then awaits the generation backend.

    Context assembly runs in a worker thread and finishes before the network
    call starts, so no store lock or transaction is held while waiting.
    Upstream errors propagate to the caller unchanged.
    """

    def __init__(self, assembler: ContextAssembler, client: GenerationClient):
        self.assembler = assembler
        self.client = client

    async def ask(
        self,
        prompt: str,
        note_id: Optional[str] = None,
        top_k: int = DEFAULT_TOP_K,
        include_all: bool = False,
        timeout: Optional[float] = None,
    ) -> AskResult:
        """Answer ``prompt`` using notes from the knowledge base as context.

        Raises:
            ValidationError: If the prompt is blank.
            UpstreamUnavailable: If the generation server cannot be reached.
            UpstreamError: If the generation server rejects the request.
        """
        context = await asyncio.to_thread(
            self.assembler.assemble,
            prompt,
            note_id=note_id,
            top_k=top_k,
            include_all=include_all,
        )
        full_prompt = render_prompt(prompt, context)

        logger.info(
            f"Asking {self.client.model} with {len(context)} context notes"
        )
        response = await self.client.generate(full_prompt, timeout=timeout)

        return AskResult(
            model=self.client.model,
            notes_used=[NoteRef(id=n.id, title=n.title) for n in context],
            response=response,
        )
