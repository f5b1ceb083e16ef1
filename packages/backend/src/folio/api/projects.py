"""Project API routes.

Learn: Routes talk to the DataClient only. They know nothing about the
realtime pipeline — every create/update/delete below still reaches
connected dashboards because the interceptor sits inside the DataClient.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException

from folio.api.deps import get_data
from folio.db.client import DataClient, RecordNotFoundError
from folio.schemas.project import ProjectCreate, ProjectRead, ProjectUpdate

router = APIRouter()


@router.post("/projects", response_model=ProjectRead, status_code=201)
async def create_project(body: ProjectCreate, data: DataClient = Depends(get_data)):
    return await data.project.create(data=body.model_dump())


@router.get("/projects", response_model=list[ProjectRead])
async def list_projects(featured: bool | None = None, data: DataClient = Depends(get_data)):
    where = {} if featured is None else {"featured": featured}
    return await data.project.find_many(where=where, order_by="-created_at")


@router.get("/projects/{project_id}", response_model=ProjectRead)
async def get_project(project_id: uuid.UUID, data: DataClient = Depends(get_data)):
    project = await data.project.find_unique(where={"id": project_id})
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


@router.patch("/projects/{project_id}", response_model=ProjectRead)
async def update_project(
    project_id: uuid.UUID,
    body: ProjectUpdate,
    data: DataClient = Depends(get_data),
):
    try:
        return await data.project.update(
            where={"id": project_id}, data=body.model_dump(exclude_unset=True)
        )
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Project not found")


@router.delete("/projects/{project_id}", status_code=204)
async def delete_project(project_id: uuid.UUID, data: DataClient = Depends(get_data)):
    try:
        await data.project.delete(where={"id": project_id})
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Project not found")
