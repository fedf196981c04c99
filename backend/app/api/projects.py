from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
import logging

from app.api.deps import get_content_agent, get_current_user, get_storage_service
from app.database import get_db
from app.models.project import Project
from app.schemas import ProjectCreate, ProjectResponse
from app.services import store
from app.services.ai.content_agent import ContentAgent
from app.services.storage import StorageService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/projects", response_model=ProjectResponse, status_code=201)
def create_project(
    body: ProjectCreate,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    project = store.insert(db, Project(user_id=user_id, title=body.title, description=body.description))
    logger.info(f"Project created: {project.id}")
    return ProjectResponse.model_validate(project)


@router.get("/projects", response_model=List[ProjectResponse])
def list_projects(
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    projects = store.query_by_index(db, Project, user_id, is_archived=False)
    return [ProjectResponse.model_validate(p) for p in projects]


@router.delete("/projects/{project_id}")
def delete_project(
    project_id: str,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
    content_agent: ContentAgent = Depends(get_content_agent),
):
    """Delete a project with its videos, agents and transcripts"""
    project = store.get(db, Project, project_id, user_id)
    handles, agent_ids = [], []
    for video in project.videos:
        handles.append(video.storage_handle)
        handles.extend(video.frame_handles or [])
        for agent in video.agents:
            handles.append(agent.thumbnail_storage_handle)
            agent_ids.append(agent.id)
    store.delete(db, project)

    for handle in handles:
        storage.delete(handle)
    for agent_id in agent_ids:
        content_agent.locks.discard(agent_id)
    return {"message": "Project deleted successfully"}
