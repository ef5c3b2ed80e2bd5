"""Pydantic schemas for crawled stories and chapters."""
import enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field


class Rating(str, enum.Enum):
    """Story content rating."""
    K = "K"
    K_PLUS = "K+"
    T = "T"
    M = "M"


class Align(str, enum.Enum):
    """Paragraph alignment of a text fragment."""
    LEFT = "LEFT"
    CENTER = "CENTER"
    RIGHT = "RIGHT"


class NonTextLine(str, enum.Enum):
    """Chapter lines that carry no text."""
    UNKNOWN = "UNKNOWN"
    HORIZONTAL_LINE = "HORIZONTAL_LINE"


class FieldError(BaseModel):
    """A field that could not be extracted from a listing row."""
    field: str
    message: str


class Author(BaseModel):
    """Story author."""
    id: Optional[int] = None
    username: Optional[str] = None


class Story(BaseModel):
    """
    Story metadata as shown on a listing page.

    Everything except the id may be missing when the row was malformed;
    the failures are recorded in ``errors``.
    """
    id: int
    title: Optional[str] = None
    author: Author = Field(default_factory=Author)
    summary: Optional[str] = None
    rating: Optional[Rating] = None
    language: Optional[str] = None
    genres: List[str] = []
    characters: List[str] = []
    relationships: List[List[str]] = []
    words: Optional[int] = None
    reviews: Optional[int] = None
    faves: Optional[int] = None
    follows: Optional[int] = None
    published: Optional[int] = None
    updated: Optional[int] = None
    cached: Optional[float] = None
    complete: bool = False
    last_chapter: int = 0
    errors: List[FieldError] = []

    def is_same_revision(self, other: "Story") -> bool:
        """
        True when neither the update time nor the word count moved.

        A value missing on either side counts as a change.
        """
        values = (self.updated, other.updated, self.words, other.words)
        if any(value is None for value in values):
            return False
        return self.updated == other.updated and self.words == other.words


class Fragment(BaseModel):
    """A run of text sharing the same formatting."""
    value: str
    b: bool = False
    i: bool = False
    s: bool = False
    u: bool = False
    a: Align = Align.LEFT


Line = Union[NonTextLine, List[Fragment]]


class Chapter(BaseModel):
    """A single chapter of a story."""
    story_id: int
    number: int
    title: Optional[str] = None
    content: List[Line] = []
    words: int = 0
    cached: Optional[float] = None

    def same_content(self, other: "Chapter") -> bool:
        """Compare the fetched payload, ignoring when it was fetched."""
        exclude = {"cached"}
        return self.model_dump(exclude=exclude) == other.model_dump(exclude=exclude)
