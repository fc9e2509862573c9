# backend/jobhooks/__init__.py
"""
Job webhook notifications package.

This package contains:
- webhooks: webhook definitions, template rendering, delivery and dispatchers
- notifications: sinks for background delivery failures
- jobs: job execution context, middleware chain and a command runner
- main: read-only FastAPI app for inspecting loaded webhooks
"""
