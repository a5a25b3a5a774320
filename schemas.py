"""
Request and response schemas

Lessons and orders are schemaless documents: their bodies are accepted as
any JSON object and stored as-is. The models below only describe the
envelopes around them and the bulk seat update payload.
"""

from pydantic import BaseModel, Field


class SpacesUpdate(BaseModel):
    """
    One entry of PUT /lessons/updateSpaces
    """
    id: str = Field(..., description="Lesson _id as hex string")
    spaces: int = Field(..., description="New seat count")


class BulkWriteSummary(BaseModel):
    acknowledged: bool = Field(True, description="Write acknowledged by the server")
    matched_count: int = Field(0, description="Lessons matched by id")
    modified_count: int = Field(0, description="Lessons whose seat count changed")
    upserted_count: int = Field(0, description="Always 0, no upserts are issued")


class SpacesUpdateResponse(BaseModel):
    message: str
    result: BulkWriteSummary


class Message(BaseModel):
    message: str


class Health(BaseModel):
    status: str = Field("ok", description="API process status")
    database: str = Field(..., description="'connected' or 'unavailable'")
