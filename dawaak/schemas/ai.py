from pydantic import BaseModel, Field


class ConsultRequest(BaseModel):
    query: str = Field(min_length=1, max_length=4000)
    lang: str | None = None  # ar (default), en


class ConsultResponse(BaseModel):
    response: str
    consultation_id: str
