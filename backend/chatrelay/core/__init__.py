"""Core module - conversation orchestration and update dispatching."""

from .dispatcher import Dispatcher
from .orchestrator import ConversationOrchestrator, SessionStateError

__all__ = ['Dispatcher', 'ConversationOrchestrator', 'SessionStateError']
