from pydantic import BaseModel
from typing import Optional, Dict, Any, List


class CreateMapRequest(BaseModel):
    """Create a map; an empty graph unless nodes/edges are given"""
    name: str = "Untitled map"
    section: Optional[str] = None
    nodes: List[Dict[str, Any]] = []
    edges: List[Dict[str, Any]] = []


class RenameRequest(BaseModel):
    name: str


class ErrorResponse(BaseModel):
    status: str = "error"
    code: str
    message: str
    issues: List[Dict[str, Any]] = []


class HealthResponse(BaseModel):
    status: str
    store_available: bool
    vision_configured: bool
