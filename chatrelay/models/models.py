# chatrelay/models/models.py
from pydantic import BaseModel
from typing import List

class RoomInfo(BaseModel):
    name: str
    member_count: int = 0

class HealthStatus(BaseModel):
    status: str = "healthy"
    connections: int
    active_rooms: int
    pub_sub_service: str

class RelayMetrics(BaseModel):
    messages_received: int
    messages_delivered: int
    dropped_unroutable: int
    dropped_queue_full: int
    uptime_hours: float
    messages_per_second: float
    concurrent_connections: int
    active_rooms: int

class RoomList(BaseModel):
    rooms: List[RoomInfo]
