"""MLLP connection statistics API endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from acm_gateway.core.deps import get_session_manager
from acm_gateway.services.session_manager import ConnectionSessionManager

router = APIRouter()


class MessageInfoResponse(BaseModel):
    """One recent frame of a connection."""

    timestamp: datetime
    content: str
    size: int


class ClientResponse(BaseModel):
    """Live connection snapshot."""

    id: str
    ip: str
    port: int
    connected_at: datetime
    messages_received: int
    last_message_at: datetime | None
    messages: list[MessageInfoResponse]


class ConnectionStatsResponse(BaseModel):
    """Aggregate connection statistics."""

    active_connections: int
    total_connections: int
    total_messages_received: int
    clients: list[ClientResponse]


@router.get("", response_model=ConnectionStatsResponse)
async def get_connection_stats(
    manager: ConnectionSessionManager = Depends(get_session_manager),
) -> ConnectionStatsResponse:
    """Get connection counters and every live client."""
    return ConnectionStatsResponse(**manager.get_stats())


@router.get("/{client_id}", response_model=ClientResponse)
async def get_client(
    client_id: str,
    manager: ConnectionSessionManager = Depends(get_session_manager),
) -> ClientResponse:
    """Get one live client by its ip:port id."""
    client = manager.get_client(client_id)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Client not found",
        )
    return ClientResponse(**client)
