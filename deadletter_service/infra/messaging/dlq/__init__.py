"""Dead-letter queue and retry handling for message consumers.

Consumers ask the service whether a failure should be retried and how long
to wait; when the answer is no, the message is wrapped in an envelope with
its failure history and published to a per-source dead-letter queue, where
operators can list, reprocess or purge it.

Usage:
    from deadletter_service.infra.messaging.dlq import (
        MessageRetryExecutor,
        get_dead_letter_service,
    )

    service = get_dead_letter_service()
    executor = MessageRetryExecutor(service, "UserCreatedHandler", "users-events")
    await executor.execute_with_retry(message, handle_user_created)
"""

from .envelope import EnvironmentMetadata, FailedMessageInfo, FailureAttempt, encode_payload
from .factory import (
    backend_for_environment,
    create_dead_letter_service,
    get_dead_letter_service,
    reset_dead_letter_service,
    resolve_backend,
)
from .faults import (
    FailureKind,
    FaultCategory,
    ProcessingFault,
    classify,
    clear_registered_faults,
    fault_category,
    register_fault_category,
    unregister_fault_category,
)
from .headers import DeadLetterHeaders, is_reprocessed, reprocessed_headers
from .notifications import AdminNotifier, NotificationChannel, NotificationConfig
from .policy import RetryDecision, RetryPolicy
from .retry import MessageRetryExecutor
from .service import BaseDeadLetterService, DeadLetterService
from .statistics import DeadLetterStatistics, FailureRate, StatisticsAggregator

__all__ = [
    "AdminNotifier",
    "BaseDeadLetterService",
    "DeadLetterHeaders",
    "DeadLetterService",
    "DeadLetterStatistics",
    "EnvironmentMetadata",
    "FailedMessageInfo",
    "FailureAttempt",
    "FailureKind",
    "FailureRate",
    "FaultCategory",
    "MessageRetryExecutor",
    "NotificationChannel",
    "NotificationConfig",
    "ProcessingFault",
    "RetryDecision",
    "RetryPolicy",
    "StatisticsAggregator",
    "backend_for_environment",
    "classify",
    "clear_registered_faults",
    "create_dead_letter_service",
    "encode_payload",
    "fault_category",
    "get_dead_letter_service",
    "is_reprocessed",
    "register_fault_category",
    "reprocessed_headers",
    "reset_dead_letter_service",
    "resolve_backend",
    "unregister_fault_category",
]
