"""Message broker infrastructure for failure handling.

- dlq: retry decisions, dead-letter envelopes and the broker backends
  (RabbitMQ via aio-pika, SQS via aioboto3, no-op for tests)
"""
