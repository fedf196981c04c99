from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from app.api.deps import agent_response, get_content_agent, get_current_user, get_storage_service
from app.database import get_db
from app.exceptions import InvalidStateTransition, NotFoundOrUnauthorized
from app.models.agent import Agent
from app.models.video import Video
from app.schemas import (
    AgentConnectionsUpdate,
    AgentCreate,
    AgentResponse,
    CanvasPosition,
    GenerateRequest,
    RefineRequest,
    RefinementResponse,
)
from app.services import store
from app.services.ai.content_agent import ContentAgent
from app.services.storage import StorageService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/agents", response_model=AgentResponse, status_code=201)
def create_agent(
    body: AgentCreate,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    video = store.get(db, Video, body.video_id, user_id)
    agent = store.insert(db, Agent(
        video_id=video.id,
        user_id=user_id,
        project_id=video.project_id,
        type=body.type.value,
        canvas_position=body.canvas_position.model_dump(),
    ))
    logger.info(f"Created {agent.type} agent {agent.id} for video {video.id}")
    return agent_response(agent)


@router.get("/agents/{agent_id}", response_model=AgentResponse)
def get_agent(
    agent_id: str,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return agent_response(store.get(db, Agent, agent_id, user_id))


@router.get("/videos/{video_id}/agents", response_model=List[AgentResponse])
def list_video_agents(
    video_id: str,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    store.get(db, Video, video_id, user_id)
    return [agent_response(a) for a in store.query_by_index(db, Agent, user_id, video_id=video_id)]


@router.put("/agents/{agent_id}/connections", response_model=AgentResponse)
def update_connections(
    agent_id: str,
    body: AgentConnectionsUpdate,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Replace the set of agents whose drafts feed this agent's prompts"""
    agent = store.get(db, Agent, agent_id, user_id)

    connections = list(dict.fromkeys(body.connections))
    if agent_id in connections:
        raise InvalidStateTransition("An agent cannot be connected to itself")

    found = {
        row.id for row in db.query(Agent.id).filter(Agent.id.in_(connections), Agent.user_id == user_id)
    } if connections else set()
    if len(found) != len(connections):
        raise NotFoundOrUnauthorized("Agent")

    return agent_response(store.patch(db, agent, connections=connections))


@router.patch("/agents/{agent_id}/position", response_model=AgentResponse)
def update_position(
    agent_id: str,
    body: CanvasPosition,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    agent = store.get(db, Agent, agent_id, user_id)
    return agent_response(store.patch(db, agent, canvas_position=body.model_dump()))


@router.post("/agents/{agent_id}/generate", response_model=AgentResponse)
async def generate_content(
    agent_id: str,
    body: Optional[GenerateRequest] = None,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    content_agent: ContentAgent = Depends(get_content_agent),
):
    """
    Generate the agent's draft from the video context, its connected agents
    and the channel profile.
    """
    body = body or GenerateRequest()
    await content_agent.generate(
        db, user_id, agent_id,
        frames=body.frames,
        additional_context=body.additional_context,
    )
    return agent_response(store.get(db, Agent, agent_id, user_id))


@router.post("/agents/{agent_id}/refine", response_model=RefinementResponse)
async def refine_content(
    agent_id: str,
    body: RefineRequest,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    content_agent: ContentAgent = Depends(get_content_agent),
):
    result = await content_agent.refine(db, user_id, agent_id, body.message)
    agent = store.get(db, Agent, agent_id, user_id)
    return RefinementResponse(
        response=result.response,
        updated_draft=result.updated_draft,
        agent=agent_response(agent),
    )


@router.delete("/agents/{agent_id}")
def delete_agent(
    agent_id: str,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
    content_agent: ContentAgent = Depends(get_content_agent),
):
    agent = store.get(db, Agent, agent_id, user_id)
    thumbnail = agent.thumbnail_storage_handle

    # Drop dangling references from the agent's peers
    for peer in db.query(Agent).filter(Agent.user_id == user_id, Agent.id != agent_id):
        if peer.connections and agent_id in peer.connections:
            peer.connections = [c for c in peer.connections if c != agent_id]
    store.delete(db, agent)

    storage.delete(thumbnail)
    content_agent.locks.discard(agent_id)
    return {"message": "Agent deleted successfully"}
