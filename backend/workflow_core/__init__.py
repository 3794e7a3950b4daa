"""
workflow_core - domain independent workflow framework

- engine: event bus, state machines, condition trees
- notification: notification channel abstraction
- cache: per-tenant TTL cache
- errors: workflow error taxonomy
"""
