import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

# Project Imports
from config import settings
from database.database import SessionLocal, engine as default_engine, init_db
from database.schemas import Coordinate, Material, Objective, Quest, RelationshipKind, User
from services.auth import AuthIdentity
from services.authoring import QuestDraft
from services.container import QuestServices, build_services
from services.errors import (
    AlreadyExists,
    FetchInProgress,
    Forbidden,
    NotFound,
    PartialCascadeFailure,
    QuestError,
    TooMany,
    TransientStoreError,
    Unauthenticated,
    ValidationError,
)

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger("quests")

ERROR_STATUS = {
    NotFound: 404,
    AlreadyExists: 409,
    FetchInProgress: 409,
    TooMany: 422,
    ValidationError: 422,
    Unauthenticated: 401,
    Forbidden: 403,
    TransientStoreError: 503,
    PartialCascadeFailure: 503,
}


class QuestIn(BaseModel):
    title: str
    description: str = ""
    coordinate_start: Coordinate
    objectives: List[Objective] = Field(default_factory=list)
    materials: List[Material] = Field(default_factory=list)
    recurring: bool = False
    hidden: bool = False


class HiddenIn(BaseModel):
    hidden: bool


class NearbyIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius_km: Optional[float] = Field(None, gt=0)
    page_size: Optional[int] = Field(None, ge=1, le=50)


class ResultIn(BaseModel):
    failed: bool = False


class NearbyQuestOut(BaseModel):
    quest: Quest
    distance_m: float


class NearbyPageOut(BaseModel):
    items: List[NearbyQuestOut]
    exhausted: bool
    failed_sub_queries: int = 0


def create_app(session_factory=None, bind=None) -> FastAPI:
    session_factory = session_factory or SessionLocal

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Initialize Database on Startup
        init_db(bind or default_engine)
        app.state.services = build_services(session_factory)
        yield

    app = FastAPI(title="Quests", description="Location-based scavenger hunts", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(QuestError)
    async def quest_error_handler(request: Request, exc: QuestError):
        status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
        content = {"detail": str(exc)}
        if isinstance(exc, ValidationError):
            content["errors"] = [
                {"objective": e.objective, "field": e.field, "message": e.message} for e in exc.errors
            ]
        elif isinstance(exc, TransientStoreError):
            # Never leak backend error text
            content = {"detail": "Something went wrong. Please try again."}
        elif isinstance(exc, PartialCascadeFailure):
            content = {"detail": "Deletion did not finish. Please try again.", "step": exc.step,
                       "completed": exc.completed}
        if status >= 500:
            logger.warning("Request to %s failed: %s", request.url.path, exc)
        return JSONResponse(status_code=status, content=content)

    register_routes(app)
    return app


def get_services(request: Request) -> QuestServices:
    return request.app.state.services


def get_identity(
    request: Request,
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
) -> AuthIdentity:
    return get_services(request).auth.authenticate(x_user_id, x_user_email)


def get_identity_for_deletion(
    request: Request,
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
) -> AuthIdentity:
    """Like get_identity, but lets a deletion that stopped halfway be retried."""
    return get_services(request).auth.authenticate(x_user_id, x_user_email, allow_pending_deletion=True)


def register_routes(app: FastAPI):

    @app.get("/")
    def read_root():
        return {"name": "Quests", "status": "ok"}

    # Profile

    @app.post("/api/users", response_model=User, status_code=201)
    def create_profile(identity: AuthIdentity = Depends(get_identity), services: QuestServices = Depends(get_services)):
        return services.accounts.create_profile(identity)

    @app.get("/api/me", response_model=User)
    def me(identity: AuthIdentity = Depends(get_identity), services: QuestServices = Depends(get_services)):
        return services.accounts.load_current_user(identity)

    @app.post("/api/me/premium", response_model=User)
    def toggle_premium(identity: AuthIdentity = Depends(get_identity), services: QuestServices = Depends(get_services)):
        return services.accounts.toggle_premium(identity.user_id)

    @app.delete("/api/me")
    def delete_account(identity: AuthIdentity = Depends(get_identity_for_deletion),
                       services: QuestServices = Depends(get_services)):
        completed = services.accounts.delete_account(identity.user_id)
        services.nearby_feeds.pop(identity.user_id, None)
        return {"ok": True, "completed": completed}

    # Quests

    @app.post("/api/quests", response_model=Quest, status_code=201)
    def publish_quest(body: QuestIn, identity: AuthIdentity = Depends(get_identity),
                      services: QuestServices = Depends(get_services)):
        services.users.get(identity.user_id)  # must have a profile first
        draft = QuestDraft(
            owner_id=identity.user_id,
            coordinate_start=body.coordinate_start,
            title=body.title,
            description=body.description,
            recurring=body.recurring,
            hidden=body.hidden,
        )
        for objective in body.objectives:
            draft.add_objective(objective)
        for material in body.materials:
            draft.add_material(material.name, material.cost)
        return draft.publish(services.quests, services.user_quests)

    @app.get("/api/quests", response_model=List[Quest])
    def browse_quests(cost: Optional[str] = None, recurring: Optional[bool] = None, limit: int = 20, offset: int = 0,
                      services: QuestServices = Depends(get_services)):
        """`cost` is "asc", "desc" or omitted (no cost ordering)."""
        cost_ascending = {"asc": True, "desc": False}.get((cost or "").lower())
        return services.quests.browse(cost_ascending=cost_ascending, recurring=recurring,
                                      limit=max(1, min(limit, 100)), offset=max(0, offset))

    @app.get("/api/quests/{quest_id}", response_model=Quest)
    def get_quest(quest_id: str, services: QuestServices = Depends(get_services)):
        return services.quests.get(quest_id)

    @app.put("/api/quests/{quest_id}", response_model=Quest)
    def edit_quest(quest_id: str, body: QuestIn, identity: AuthIdentity = Depends(get_identity),
                   services: QuestServices = Depends(get_services)):
        """Full re-upload by the owner. Validated like a new quest."""
        return services.user_quests.edit_quest(
            identity.user_id, quest_id,
            title=body.title,
            description=body.description,
            coordinate_start=body.coordinate_start,
            objectives=body.objectives,
            materials=body.materials,
            recurring=body.recurring,
            hidden=body.hidden,
        )

    @app.patch("/api/quests/{quest_id}/hidden", response_model=Quest)
    def set_hidden(quest_id: str, body: HiddenIn, identity: AuthIdentity = Depends(get_identity),
                   services: QuestServices = Depends(get_services)):
        return services.user_quests.set_hidden(identity.user_id, quest_id, body.hidden)

    @app.delete("/api/quests/{quest_id}")
    def delete_quest(quest_id: str, identity: AuthIdentity = Depends(get_identity),
                     services: QuestServices = Depends(get_services)):
        return {"ok": True, "completed": services.user_quests.delete_quest(identity.user_id, quest_id)}

    # Nearby

    @app.post("/api/nearby")
    def start_nearby(body: NearbyIn, identity: AuthIdentity = Depends(get_identity),
                     services: QuestServices = Depends(get_services)):
        radius_m = (body.radius_km or settings.NEARBY_RADIUS_KM) * 1000
        center = Coordinate(latitude=body.latitude, longitude=body.longitude)
        nearby = services.start_nearby(identity.user_id, center, radius_m, page_size=body.page_size)
        return {"ok": True, "sub_queries": len(nearby.cursors)}

    @app.post("/api/nearby/more", response_model=NearbyPageOut)
    async def load_more_nearby(identity: AuthIdentity = Depends(get_identity),
                               services: QuestServices = Depends(get_services)):
        nearby = services.nearby_feeds.get(identity.user_id)
        if nearby is None:
            raise NotFound("Start a nearby search first")
        result = await nearby.fetch_more()
        return {
            "items": [{"quest": n.quest, "distance_m": n.distance_m} for n in result.added],
            "exhausted": result.exhausted,
            "failed_sub_queries": len(result.failed),
        }

    # Lists

    @app.put("/api/me/watchlist/{quest_id}")
    def add_watchlist(quest_id: str, identity: AuthIdentity = Depends(get_identity),
                      services: QuestServices = Depends(get_services)):
        return {"ok": True, "added": services.user_quests.add_to_watchlist(identity.user_id, quest_id)}

    @app.delete("/api/me/watchlist/{quest_id}")
    def remove_watchlist(quest_id: str, identity: AuthIdentity = Depends(get_identity),
                         services: QuestServices = Depends(get_services)):
        return {"ok": True, "removed": services.user_quests.remove_from_watchlist(identity.user_id, quest_id)}

    @app.post("/api/me/quests/{quest_id}/result")
    def record_result(quest_id: str, body: ResultIn, identity: AuthIdentity = Depends(get_identity),
                      services: QuestServices = Depends(get_services)):
        return {"ok": True, "added": services.user_quests.record_result(identity.user_id, quest_id, body.failed)}

    @app.get("/api/me/quests/{kind}", response_model=List[Quest])
    def list_my_quests(kind: RelationshipKind, identity: AuthIdentity = Depends(get_identity),
                       services: QuestServices = Depends(get_services)):
        return services.user_quests.list_quests(identity.user_id, kind)


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
