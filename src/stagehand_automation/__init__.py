"""Stagehand declarative convergence toolkit."""

from .inventory import InventoryLoader
from .playbook import PlaybookLoader
from .runner import HandlerDispatcher, Orchestrator, TaskExecutor

__all__ = ["InventoryLoader", "PlaybookLoader", "TaskExecutor", "HandlerDispatcher", "Orchestrator"]
