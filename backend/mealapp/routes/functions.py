"""
HTTP trigger for the analysis job processor
"""
from fastapi import APIRouter, Depends

from ..config import settings
from ..db import AsyncSessionLocal
from ..inference.vision_openai import OpenAIVisionAnalyzer
from ..schemas import AnalyzeBatchResponse
from ..services.job_processor import run_analysis_batch
from ..services.storage import S3UrlSigner

router = APIRouter(prefix="/functions", tags=["Functions"])

def get_session_factory():
    return AsyncSessionLocal

def get_analyzer():
    return OpenAIVisionAnalyzer(settings)

def get_signer():
    return S3UrlSigner(settings)

@router.api_route("/analyze-meal", methods=["GET", "POST"], response_model=AnalyzeBatchResponse)
async def analyze_meal(
    session_factory=Depends(get_session_factory),
    analyzer=Depends(get_analyzer),
    signer=Depends(get_signer),
):
    """Process one batch of due analyze_meal jobs"""
    result = await run_analysis_batch(session_factory, cfg=settings, analyzer=analyzer, signer=signer)
    return AnalyzeBatchResponse(**result.as_dict())
