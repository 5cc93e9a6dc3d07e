from __future__ import annotations

from fastapi import APIRouter, Path, Request, status

from src.alerting.schemas.clusters import ClusterCreate, ClusterListResponse, ClusterOut, ClusterUpdate
from src.alerting.schemas.common import ErrorResponse
from src.alerting.services import clusters_service
from src.alerting.state import get_state

router = APIRouter(prefix="/api/clusters", tags=["Clusters"])


@router.get("", response_model=ClusterListResponse, summary="List clusters", operation_id="list_clusters")
def list_clusters(request: Request) -> ClusterListResponse:
    return clusters_service.list_clusters(get_state(request.app))


@router.post(
    "",
    response_model=ClusterOut,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
    summary="Register cluster",
    operation_id="create_cluster",
)
def create_cluster(request: Request, payload: ClusterCreate) -> ClusterOut:
    return clusters_service.create_cluster(get_state(request.app), payload)


@router.get(
    "/{name}",
    response_model=ClusterOut,
    responses={404: {"model": ErrorResponse}},
    summary="Get cluster",
    operation_id="get_cluster",
)
def get_cluster(request: Request, name: str = Path(...)) -> ClusterOut:
    return clusters_service.get_cluster(get_state(request.app), name)


@router.patch(
    "/{name}",
    response_model=ClusterOut,
    responses={404: {"model": ErrorResponse}},
    summary="Update cluster",
    operation_id="patch_cluster",
)
def patch_cluster(request: Request, payload: ClusterUpdate, name: str = Path(...)) -> ClusterOut:
    return clusters_service.update_cluster(get_state(request.app), name, payload)


@router.delete(
    "/{name}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
    summary="Remove cluster",
    operation_id="delete_cluster",
)
def delete_cluster(request: Request, name: str = Path(...)) -> None:
    clusters_service.delete_cluster(get_state(request.app), name)
    return None
