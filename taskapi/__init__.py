"""
Task Completion API - records that a user address completed the task.

Provides REST endpoints for:
- Registering a completion (POST /api/complete-task)
- Checking completion status (GET /api/task-status/{userAddress})
- Health and stats snapshots
"""

__version__ = "1.0.0"
