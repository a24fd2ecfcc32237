"""
Utility functions and helpers.

Modules:
- files: File read/write helpers
- logging: Logging configuration
- progress: rich progress and summary helpers
- templates: Jinja2 template loading
"""
