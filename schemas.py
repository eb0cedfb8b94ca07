"""Pydantic models for request/response"""
from datetime import datetime
from pydantic import BaseModel, Field
from typing import List, Literal, Optional


class AuthRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class ProcessUrlRequest(BaseModel):
    modelUrl: Optional[str] = None
    garmentUrl: Optional[str] = None


class ProcessResponse(BaseModel):
    imageUrl: str


class UploadResponse(BaseModel):
    url: str


class StyleCodeUpdate(BaseModel):
    styleCode: str = Field(..., max_length=200)


class GalleryDeleteRequest(BaseModel):
    ids: List[str]


class GalleryDownloadRequest(BaseModel):
    ids: List[str] = Field(..., min_length=1)


class ModelImageOut(BaseModel):
    id: str
    filename: str
    contentType: str
    size: int
    previewUrl: str


class GarmentEntryOut(ModelImageOut):
    styleCode: str
    styleCodeValid: bool


class ModelListResponse(BaseModel):
    models: List[ModelImageOut]
    warning: Optional[str] = None


class GarmentListResponse(BaseModel):
    garments: List[GarmentEntryOut]
    warning: Optional[str] = None


class GalleryItemOut(BaseModel):
    id: str
    resultUrl: str
    filename: str
    createdAt: datetime


class LatestResultOut(BaseModel):
    result: GalleryItemOut
    modelId: str
    modelPreviewUrl: str
    styleCode: str


class ItemOutcomeOut(BaseModel):
    position: int
    garmentId: str
    styleCode: str
    modelId: Optional[str] = None
    status: Literal["success", "failure"]
    result: Optional[GalleryItemOut] = None
    error: Optional[str] = None


class BatchStatusResponse(BaseModel):
    status: Literal["idle", "running"]
    currentIndex: int
    total: int
    currentModelIndex: int
    modelCount: int
    progressPercent: int
    cancelRequested: bool
    outcomes: List[ItemOutcomeOut]
    errors: List[str]
    lastError: Optional[str] = None
    latest: Optional[LatestResultOut] = None


class GalleryResponse(BaseModel):
    items: List[GalleryItemOut]


class DeleteResponse(BaseModel):
    deleted: int
