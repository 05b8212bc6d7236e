# app/deps.py
from typing import Optional

from fastapi import Header
from pydantic import BaseModel

from app.errors import Unauthorized
from app.repos.record_store import RecordStore, get_record_store
from app.repos.redis_jobs import JobRepo, get_job_repo
from app.services.llm import ModelClient, get_model_client


class CurrentUser(BaseModel):
    id: str
    organizationId: str


def get_current_user(
    x_user_id: Optional[str] = Header(None),
    x_organization_id: Optional[str] = Header(None),
) -> CurrentUser:
    # Headers are set by the auth gateway in front of this service
    if not x_user_id or not x_organization_id:
        raise Unauthorized("Missing user or organization")
    return CurrentUser(id=x_user_id, organizationId=x_organization_id)


def get_jobs() -> JobRepo:
    return get_job_repo()


def get_store() -> RecordStore:
    return get_record_store()


def get_model() -> ModelClient:
    return get_model_client()
