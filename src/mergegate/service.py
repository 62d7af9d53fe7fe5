from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from .model import GateDecision
from .orchestrator import Orchestrator
from .schema import DecisionResponse, JobResultResponse, PushAccepted, PushPayload
from .store import DecisionStore
from .ui.console import get_console


def decision_response(decision: GateDecision) -> DecisionResponse:
    return DecisionResponse(
        commit=decision.commit,
        branch=decision.branch,
        outcome=decision.outcome.value,
        per_job={
            name: JobResultResponse(
                job_name=r.job_name,
                status=r.status.value,
                start_time=r.start_time.isoformat(),
                end_time=r.end_time.isoformat(),
                log_ref=r.log_ref,
                failed_step=r.failed_step,
                attempts=r.attempts,
                message=r.message,
            )
            for name, r in decision.per_job.items()
        },
    )


def create_app(orchestrator: Orchestrator, store: Optional[DecisionStore] = None) -> FastAPI:
    app = FastAPI(title="mergegate")

    # -------------------- Endpoints --------------------

    @app.get("/healthz")
    async def healthz():
        return {"ok": True, "jobs": orchestrator.registry.names()}

    @app.post("/events/push", response_model=PushAccepted)
    async def push(payload: PushPayload):
        if not payload.is_integration:
            # not ours; acknowledge so the host does not retry delivery
            return JSONResponse(
                status_code=200,
                content=PushAccepted(accepted=False, branch=payload.branch, commit=payload.commit).model_dump(),
            )

        event = payload.to_event()
        get_console().print_debug(f"push received: {event.branch}@{event.commit}")
        orchestrator.submit(event)
        return JSONResponse(
            status_code=202,
            content=PushAccepted(
                accepted=True,
                branch=event.branch,
                commit=event.commit,
                jobs=orchestrator.registry.names(),
            ).model_dump(),
        )

    @app.get("/decisions/{commit}", response_model=DecisionResponse)
    def get_decision(commit: str):
        if store is None:
            raise HTTPException(status_code=404, detail="Decisions are not being recorded")
        decision = store.latest(commit)
        if decision is None:
            raise HTTPException(status_code=404, detail="No decision for commit")
        return decision_response(decision)

    @app.on_event("shutdown")
    async def shutdown() -> None:
        orchestrator.shutdown(wait=False)
        if store is not None:
            store.dispose()

    return app
