"""
Voice scheduling agent 시스템
"""

from .conflict_manager import ConflictEngine
from .intent_agent import IntentAgent
from .orchestrator import DialogueCoordinator
from .state import ConversationStore
from .task_cache import TaskReconciliationCache
from .time_block_planner import FreeSlotFinder

__all__ = [
    "ConflictEngine",
    "IntentAgent",
    "DialogueCoordinator",
    "ConversationStore",
    "TaskReconciliationCache",
    "FreeSlotFinder",
]
