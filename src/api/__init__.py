"""
FastAPI service for activity alerts.

Provides REST API for alert management with:
- GET/POST /alerts, GET /alerts/kinds, GET/DELETE /alerts/{id},
  PATCH /alerts/{id}/status - Alert definition lifecycle
- POST /records - Evaluate an activity record
- GET /health - Service health check
"""

from src.api.app import create_app

__all__ = ["create_app"]
