"""
ITSM Engine API

FastAPI application with:
- Ticket CRUD with auto-assignment and SLA deadlines
- Assignment rule management
- SLA policy and escalation rule management
- Teams and membership
- On-demand and scheduled escalation passes
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..config import Settings, get_settings
from ..errors import (
    DuplicateTeamError,
    ITSMError,
    NotFoundError,
    PermissionDeniedError,
    PolicyConflictError,
    SessionExpiredError,
)
from ..logging import get_logger, setup_logging
from ..models import (
    AssignmentConditions,
    AssignTarget,
    EscalationActions,
    EscalationConditions,
    MemberRole,
    Priority,
    ReassignTarget,
    SessionContext,
    TicketStatus,
    TicketType,
    Urgency,
    UserRole,
    utcnow,
)
from ..repositories import Store
from ..scheduler import EscalationScheduler
from ..services import Services, build_services
from ..services.auth import require_admin
from ..services.sla import sla_state, time_remaining

logger = get_logger(__name__)


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CreateTicketRequest(BaseModel):
    title: str
    description: str = ""
    type: TicketType = TicketType.INCIDENT
    priority: Priority = Priority.MEDIUM
    urgency: Urgency = Urgency.MEDIUM
    category: str = "General"
    assigned_to: Optional[UUID] = None


class UpdateTicketRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TicketStatus] = None
    priority: Optional[Priority] = None
    urgency: Optional[Urgency] = None
    category: Optional[str] = None
    assigned_to: Optional[UUID] = None


class AssignTicketRequest(BaseModel):
    assigned_to: UUID


class AddCommentRequest(BaseModel):
    content: str


class CreateRuleRequest(BaseModel):
    name: str
    description: Optional[str] = None
    is_active: bool = True
    priority: int
    conditions: AssignmentConditions = Field(default_factory=AssignmentConditions)
    assign_to: AssignTarget


class UpdateRuleRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    priority: Optional[int] = None
    conditions: Optional[AssignmentConditions] = None
    assign_to: Optional[AssignTarget] = None


class ReorderRulesRequest(BaseModel):
    rule_ids: List[UUID]


class MatchRuleRequest(BaseModel):
    category: str
    priority: Priority
    type: TicketType


class CreatePolicyRequest(BaseModel):
    name: str
    priority: Priority
    response_time: int = Field(..., ge=0)
    resolution_time: int = Field(..., ge=0)


class UpdatePolicyRequest(BaseModel):
    name: Optional[str] = None
    priority: Optional[Priority] = None
    response_time: Optional[int] = Field(None, ge=0)
    resolution_time: Optional[int] = Field(None, ge=0)
    enabled: Optional[bool] = None


class CreateEscalationRequest(BaseModel):
    name: str
    description: Optional[str] = None
    is_active: bool = True
    priority: int
    conditions: EscalationConditions = Field(default_factory=EscalationConditions)
    actions: EscalationActions = Field(default_factory=EscalationActions)


class EscalationConditionsPatch(BaseModel):
    priorities: Optional[List[Priority]] = None
    statuses: Optional[List[TicketStatus]] = None
    overdue_by: Optional[int] = Field(None, ge=0)


class EscalationActionsPatch(BaseModel):
    notify_users: Optional[List[UUID]] = None
    notify_teams: Optional[List[UUID]] = None
    reassign_to: Optional[ReassignTarget] = None
    change_priority: Optional[Priority] = None
    add_comment: Optional[str] = None


class UpdateEscalationRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    priority: Optional[int] = None
    conditions: Optional[EscalationConditionsPatch] = None
    actions: Optional[EscalationActionsPatch] = None


class RunEscalationsRequest(BaseModel):
    now: Optional[datetime] = None


class CreateTeamRequest(BaseModel):
    name: str
    description: Optional[str] = None
    leader_id: Optional[UUID] = None


class AddMemberRequest(BaseModel):
    user_id: UUID
    role: MemberRole = MemberRole.MEMBER


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_services(request: Request) -> Services:
    return request.app.state.services


def get_session(
    x_user_id: Optional[UUID] = Header(None),
    x_user_role: UserRole = Header(UserRole.USER),
) -> SessionContext:
    """
    Caller identity from request headers.

    Authentication itself happens upstream; this only turns the
    forwarded identity into an explicit SessionContext.
    """
    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return SessionContext(user_id=x_user_id, role=x_user_role)


ERROR_STATUS = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (SessionExpiredError, status.HTTP_401_UNAUTHORIZED),
    (PolicyConflictError, status.HTTP_409_CONFLICT),
    (DuplicateTeamError, status.HTTP_409_CONFLICT),
)


async def handle_itsm_error(request: Request, exc: ITSMError) -> JSONResponse:
    code = status.HTTP_400_BAD_REQUEST
    for error_type, error_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            code = error_code
            break

    logger.warning(
        "request_failed",
        path=request.url.path,
        error=type(exc).__name__,
        detail=str(exc),
    )
    return JSONResponse(status_code=code, content={"detail": str(exc)})


# =============================================================================
# APP SETUP
# =============================================================================

def create_app(
    store: Optional[Store] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the application around a repository store.

    Tests pass their own Store and settings; the module-level app
    uses a fresh in-memory store and environment settings.
    """
    settings = settings or get_settings()
    store = store or Store()
    services = build_services(store)
    scheduler = EscalationScheduler(
        services.escalations,
        interval_minutes=settings.escalation_interval_minutes,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level.value, json_logs=settings.json_logs)
        if settings.scheduler_enabled and not settings.is_testing:
            scheduler.start()
        yield
        scheduler.shutdown()

    app = FastAPI(
        title="ITSM Engine",
        description="Ticket routing, SLA deadlines and escalation rules",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.services = services
    app.state.settings = settings
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ITSMError, handle_itsm_error)

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:

    # =========================================================================
    # HEALTH CHECK
    # =========================================================================

    @app.get("/health")
    async def health_check(request: Request):
        return {
            "status": "healthy",
            "service": "itsm-engine",
            "version": "0.1.0",
            "jobs": request.app.state.scheduler.get_jobs_status(),
        }

    # =========================================================================
    # TICKET ENDPOINTS
    # =========================================================================

    @app.post("/tickets", status_code=status.HTTP_201_CREATED)
    async def create_ticket(
        body: CreateTicketRequest,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        """
        Create a ticket.

        SLA deadline is fixed now; assignment rules run when no
        assignee is given.
        """
        return await services.tickets.create_ticket(
            created_by=session.user_id,
            **body.model_dump(),
        )

    @app.get("/tickets")
    async def list_tickets(
        status: Optional[TicketStatus] = None,
        priority: Optional[Priority] = None,
        category: Optional[str] = None,
        assigned_to: Optional[UUID] = None,
        created_by: Optional[UUID] = None,
        services: Services = Depends(get_services),
    ):
        return await services.tickets.list_tickets(
            status=status,
            priority=priority,
            category=category,
            assigned_to=assigned_to,
            created_by=created_by,
        )

    @app.get("/tickets/{ticket_id}")
    async def get_ticket(ticket_id: UUID, services: Services = Depends(get_services)):
        return await services.tickets.get_ticket(ticket_id)

    @app.patch("/tickets/{ticket_id}")
    async def update_ticket(
        ticket_id: UUID,
        body: UpdateTicketRequest,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        return await services.tickets.update_ticket(
            ticket_id, session, **body.model_dump(exclude_unset=True)
        )

    @app.post("/tickets/{ticket_id}/assign")
    async def assign_ticket(
        ticket_id: UUID,
        body: AssignTicketRequest,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        return await services.tickets.assign(ticket_id, body.assigned_to, session)

    @app.get("/tickets/{ticket_id}/history")
    async def get_history(ticket_id: UUID, services: Services = Depends(get_services)):
        return await services.tickets.get_history(ticket_id)

    @app.get("/tickets/{ticket_id}/comments")
    async def get_comments(ticket_id: UUID, services: Services = Depends(get_services)):
        return await services.tickets.get_comments(ticket_id)

    @app.post("/tickets/{ticket_id}/comments", status_code=status.HTTP_201_CREATED)
    async def add_comment(
        ticket_id: UUID,
        body: AddCommentRequest,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        return await services.tickets.add_comment(ticket_id, session, body.content)

    @app.get("/tickets/{ticket_id}/sla")
    async def get_ticket_sla(
        ticket_id: UUID,
        request: Request,
        services: Services = Depends(get_services),
    ):
        """Deadline, signed seconds remaining and display state."""
        ticket = await services.tickets.get_ticket(ticket_id)
        settings: Settings = request.app.state.settings
        now = utcnow()

        remaining = time_remaining(ticket, now)
        return {
            "ticket_id": ticket.id,
            "sla_deadline": ticket.sla_deadline,
            "seconds_remaining": int(remaining.total_seconds()) if remaining is not None else None,
            "state": sla_state(
                ticket, now, at_risk_window=timedelta(minutes=settings.sla_at_risk_minutes)
            ),
        }

    # =========================================================================
    # ASSIGNMENT RULE ENDPOINTS
    # =========================================================================

    @app.get("/assignment-rules")
    async def list_rules(services: Services = Depends(get_services)):
        return await services.rules.list_rules()

    @app.get("/assignment-rules/stats")
    async def rule_stats(services: Services = Depends(get_services)):
        return await services.rules.get_stats()

    @app.post("/assignment-rules", status_code=status.HTTP_201_CREATED)
    async def create_rule(
        body: CreateRuleRequest,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        return await services.rules.create_rule(
            session,
            name=body.name,
            priority=body.priority,
            assign_to=body.assign_to,
            conditions=body.conditions,
            is_active=body.is_active,
            description=body.description,
        )

    @app.post("/assignment-rules/reorder")
    async def reorder_rules(
        body: ReorderRulesRequest,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        return await services.rules.reorder(session, body.rule_ids)

    @app.post("/assignment-rules/match")
    async def match_rule(body: MatchRuleRequest, services: Services = Depends(get_services)):
        """Dry run: which rule would route a ticket with these fields."""
        rule = await services.rules.find_matching_rule(body)
        return {"rule": rule}

    @app.patch("/assignment-rules/{rule_id}")
    async def update_rule(
        rule_id: UUID,
        body: UpdateRuleRequest,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        return await services.rules.update_rule(
            session, rule_id, **body.model_dump(exclude_unset=True)
        )

    @app.post("/assignment-rules/{rule_id}/toggle")
    async def toggle_rule(
        rule_id: UUID,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        return await services.rules.toggle_active(session, rule_id)

    @app.delete("/assignment-rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_rule(
        rule_id: UUID,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        await services.rules.delete_rule(session, rule_id)

    # =========================================================================
    # SLA ENDPOINTS
    # =========================================================================

    @app.get("/sla/policies")
    async def list_policies(services: Services = Depends(get_services)):
        return await services.sla.list_policies()

    @app.post("/sla/policies", status_code=status.HTTP_201_CREATED)
    async def create_policy(
        body: CreatePolicyRequest,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        return await services.sla.create_policy(session, **body.model_dump())

    @app.patch("/sla/policies/{policy_id}")
    async def update_policy(
        policy_id: UUID,
        body: UpdatePolicyRequest,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        return await services.sla.update_policy(
            session, policy_id, **body.model_dump(exclude_unset=True)
        )

    @app.delete("/sla/policies/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_policy(
        policy_id: UUID,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        await services.sla.delete_policy(session, policy_id)

    @app.get("/sla/escalations")
    async def list_escalations(services: Services = Depends(get_services)):
        return await services.sla.list_escalations()

    @app.post("/sla/escalations", status_code=status.HTTP_201_CREATED)
    async def create_escalation(
        body: CreateEscalationRequest,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        return await services.sla.create_escalation(
            session,
            name=body.name,
            priority=body.priority,
            conditions=body.conditions,
            actions=body.actions,
            is_active=body.is_active,
            description=body.description,
        )

    @app.post("/sla/escalations/run")
    async def run_escalations(
        body: RunEscalationsRequest,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        """Run one escalation pass now instead of waiting for the scheduler."""
        require_admin(session, action="run escalations")
        applied = await services.escalations.run(now=body.now)
        return {"applied": applied, "count": len(applied)}

    @app.patch("/sla/escalations/{rule_id}")
    async def update_escalation(
        rule_id: UUID,
        body: UpdateEscalationRequest,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        return await services.sla.update_escalation(
            session,
            rule_id,
            name=body.name,
            description=body.description,
            is_active=body.is_active,
            priority=body.priority,
            conditions=body.conditions.model_dump() if body.conditions else None,
            actions=body.actions.model_dump() if body.actions else None,
        )

    @app.post("/sla/escalations/{rule_id}/toggle")
    async def toggle_escalation(
        rule_id: UUID,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        return await services.sla.toggle_escalation(session, rule_id)

    @app.delete("/sla/escalations/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_escalation(
        rule_id: UUID,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        await services.sla.delete_escalation(session, rule_id)

    # =========================================================================
    # TEAM ENDPOINTS
    # =========================================================================

    @app.get("/teams")
    async def list_teams(services: Services = Depends(get_services)):
        return await services.teams.list_teams()

    @app.post("/teams", status_code=status.HTTP_201_CREATED)
    async def create_team(
        body: CreateTeamRequest,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        return await services.teams.create_team(session, **body.model_dump())

    @app.get("/teams/{team_id}/members")
    async def get_members(team_id: UUID, services: Services = Depends(get_services)):
        return await services.teams.get_members(team_id)

    @app.post("/teams/{team_id}/members", status_code=status.HTTP_201_CREATED)
    async def add_member(
        team_id: UUID,
        body: AddMemberRequest,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        return await services.teams.add_member(session, team_id, body.user_id, body.role)

    @app.delete("/teams/{team_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def remove_member(
        team_id: UUID,
        user_id: UUID,
        session: SessionContext = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        await services.teams.remove_member(session, team_id, user_id)

    # =========================================================================
    # NOTIFICATION ENDPOINTS
    # =========================================================================

    @app.get("/users/{user_id}/notifications")
    async def get_notifications(
        user_id: UUID,
        request: Request,
        read: Optional[bool] = None,
    ):
        store: Store = request.app.state.store
        return await store.notifications.get_for_user(user_id, read=read)


app = create_app()


# =============================================================================
# RUN
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
