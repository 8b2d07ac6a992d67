"""Import engine services."""

from storefront_import.services.batch_runner import BatchRunner
from storefront_import.services.job_manager import SYSTEM_ACTOR_ID, JobManager
from storefront_import.services.job_store import ImportJobStore
from storefront_import.services.progress import ProgressPublisher, Subscription
from storefront_import.services.reconciler import Reconciler
from storefront_import.services.retry import RetryPolicy, RetryRunner
from storefront_import.services.worker import ImportWorker

__all__ = [
    "BatchRunner",
    "ImportJobStore",
    "ImportWorker",
    "JobManager",
    "ProgressPublisher",
    "Reconciler",
    "RetryPolicy",
    "RetryRunner",
    "SYSTEM_ACTOR_ID",
    "Subscription",
]
