"""Dead-letter broker backends.

The broker backends import their client libraries at module level and are
loaded on demand by create_dead_letter_service():

    backends.rabbitmq.RabbitMQDeadLetterService   aio-pika
    backends.sqs.SQSDeadLetterService             aioboto3
    backends.noop.NoOpDeadLetterService           no broker
"""

from .noop import NOOP_RETRY_POLICY, NoOpDeadLetterService

__all__ = ["NOOP_RETRY_POLICY", "NoOpDeadLetterService"]
