"""Pydantic schemas for portfolio projects.

Learn: Pydantic v2 models validate request/response data. Separate
"Create"/"Update" schemas (input) from "Read" schemas (output).
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ProjectCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    technologies: str = Field(default="", max_length=500)
    link: Optional[str] = Field(default=None, max_length=500)
    image_url: Optional[str] = Field(default=None, max_length=500)
    github_url: Optional[str] = Field(default=None, max_length=500)
    featured: bool = False


class ProjectUpdate(BaseModel):
    """Partial update — only fields that are sent get written."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    technologies: Optional[str] = Field(default=None, max_length=500)
    link: Optional[str] = Field(default=None, max_length=500)
    image_url: Optional[str] = Field(default=None, max_length=500)
    github_url: Optional[str] = Field(default=None, max_length=500)
    featured: Optional[bool] = None


class ProjectRead(BaseModel):
    id: uuid.UUID
    title: str
    description: str
    technologies: str
    link: Optional[str]
    image_url: Optional[str]
    github_url: Optional[str]
    featured: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
