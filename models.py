# models.py
from pydantic import BaseModel, Field
from typing import Dict, List, Optional

class MirrorDescriptor(BaseModel):
    label: str = Field(..., description="Mirror label as shown on the episode page")
    encoded_payload: str = Field("", description="Base64 JSON blob from the data-content attribute")

    class Config:
        frozen = True

class QualityTier(BaseModel):
    quality: str = Field(..., description="Quality label (e.g., 360p, 480p, 720p)")
    mirrors: List[MirrorDescriptor] = Field(default_factory=list, description="Mirrors in page order")

    class Config:
        frozen = True

class ResolvedMirror(BaseModel):
    label: str = Field(..., description="Mirror label")
    url: Optional[str] = Field(None, description="Embeddable player URL, null when resolution failed")

    class Config:
        from_attributes = True

class DownloadLink(BaseModel):
    provider: str = Field(..., description="Download provider name")
    url: Optional[str] = Field(None, description="Download URL")

    class Config:
        from_attributes = True

class StreamingResult(BaseModel):
    title: str = Field(..., description="Episode title")
    iframe: Optional[str] = Field(None, description="Default player iframe URL")
    mirrors: Dict[str, List[ResolvedMirror]] = Field(default_factory=dict, description="Resolved mirrors by quality")
    downloads: Dict[str, List[DownloadLink]] = Field(default_factory=dict, description="Download links by quality")

    class Config:
        from_attributes = True

class EpisodeLink(BaseModel):
    title: str = Field(..., description="Episode title")
    slug: str = Field(..., description="Episode slug")
    link: str = Field(..., description="API URL for the episode streaming data")
    date: Optional[str] = Field(None, description="Release date")

    class Config:
        from_attributes = True

class Recommendation(BaseModel):
    title: str = Field(..., description="Anime title")
    slug: str = Field(..., description="Anime slug")
    link: str = Field(..., description="API URL for the anime detail")
    image: Optional[str] = Field(None, description="Poster URL")

    class Config:
        from_attributes = True

class AnimeDetail(BaseModel):
    title: str = Field(..., description="Anime title")
    poster: Optional[str] = Field(None, description="Poster URL")
    synopsis: str = Field("No synopsis available.", description="Synopsis")
    genres: List[str] = Field(default_factory=list, description="List of genres")
    episodes: List[EpisodeLink] = Field(default_factory=list, description="Episodes, latest first")
    recommendations: List[Recommendation] = Field(default_factory=list, description="Recommended anime")

    class Config:
        from_attributes = True
        # Info table rows (japanese, skor, produser, ...) are kept as extra fields
        extra = "allow"

class AnimeSummary(BaseModel):
    title: str = Field(..., description="Anime title")
    slug: str = Field(..., description="Anime slug")
    image: Optional[str] = Field(None, description="Poster URL")
    link: str = Field(..., description="API URL for the anime detail")
    episodes: str = Field("N/A", description="Latest episode label")
    score: str = Field("N/A", description="Score or release day")
    date: str = Field("N/A", description="Release date")

    class Config:
        from_attributes = True

class SearchResult(BaseModel):
    title: str = Field(..., description="Anime title")
    slug: str = Field(..., description="Anime slug")
    link: str = Field(..., description="API URL for the anime detail")
    image: Optional[str] = Field(None, description="Poster URL")
    genres: List[str] = Field(default_factory=list, description="List of genres")
    status: str = Field("Unknown", description="Airing status")
    rating: str = Field("N/A", description="Rating")

    class Config:
        from_attributes = True

class EpisodeResponse(BaseModel):
    success: bool = True
    slug: str
    data: StreamingResult
    timestamp: str

class AnimeResponse(BaseModel):
    success: bool = True
    slug: str
    data: AnimeDetail
    timestamp: str

class SearchResponse(BaseModel):
    success: bool = True
    query: str
    data: List[SearchResult] = Field(default_factory=list)
    timestamp: str

class AnimeListResponse(BaseModel):
    success: bool = True
    data: List[AnimeSummary] = Field(default_factory=list)
    timestamp: str

class ErrorResponse(BaseModel):
    success: bool = Field(False, description="Always false for errors")
    error: str = Field(..., description="Error message")
    message: Optional[str] = Field(None, description="Additional error details")
    timestamp: Optional[str] = Field(None, description="Time of the failure")

    class Config:
        from_attributes = True
