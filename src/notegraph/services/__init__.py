"""Service layer: store lifecycle, read projections and retrieval."""

from notegraph.services.assistant_service import AssistantService
from notegraph.services.context_assembler import ContextAssembler
from notegraph.services.generation_client import GenerationClient
from notegraph.services.graph_service import GraphService
from notegraph.services.knowledge_base import KnowledgeBase

__all__ = [
    "AssistantService",
    "ContextAssembler",
    "GenerationClient",
    "GraphService",
    "KnowledgeBase",
]
