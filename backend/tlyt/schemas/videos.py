"""Pydantic schemas for videos and analyses"""
from pydantic import BaseModel, Field
from typing import Optional


class VideoSubmitRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=2048)


class AnalysisRequestBody(BaseModel):
    instructions: Optional[str] = Field(None, max_length=2000)
