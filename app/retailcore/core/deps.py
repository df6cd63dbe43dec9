from fastapi import Request

from app.retailcore.services.orchestrator import PaymentOrchestrator


def get_orchestrator(request: Request) -> PaymentOrchestrator:
    return request.app.state.orchestrator


def get_settings(request: Request):
    return request.app.state.settings


def trace_id_of(request: Request) -> str | None:
    return getattr(request.state, "trace_id", None)
