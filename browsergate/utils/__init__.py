# browsergate/utils/__init__.py
"""
The `utils` package collects cross-cutting helpers: structured logging and
its sinks, configuration loading, log redaction, and small asyncio shims.
"""
