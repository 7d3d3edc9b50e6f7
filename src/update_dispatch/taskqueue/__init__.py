from .jobs import DispatchJobQueue
from .sink import RedisTaskQueue, TaskQueueSink
from .worker import run_worker

__all__ = ["DispatchJobQueue", "RedisTaskQueue", "TaskQueueSink", "run_worker"]
