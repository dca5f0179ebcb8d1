"""Task base class with structured logging, and the send-by-name dispatcher."""
from .base_task import BaseTask
from .dispatcher import TaskDispatcher

__all__ = ["BaseTask", "TaskDispatcher"]
