from pydantic import BaseModel, ConfigDict, Field
from typing import List


class IdeaStub(BaseModel):
    id: str
    title: str
    description: str = ""


class Idea(IdeaStub):
    model_config = ConfigDict(from_attributes=True)

    book_id: str
    position: int


class BookCreate(BaseModel):
    id: str
    title: str
    ideas: List[IdeaStub] = Field(default_factory=list)


class Book(BaseModel):
    id: str
    title: str
    ideas: List[Idea] = Field(default_factory=list)
