"""
Analysis router: priced AI features behind the credit gate.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, ensure_account_scope, get_auth_context
from routers.ledger_http import ledger_http_exception
from routers.rate_limit import rate_limit
from services.feature_gate import run_gated_feature
from services.inference import run_analysis
from services.ledger_errors import ConsumeFailed, LedgerError

router = APIRouter()
logger = logging.getLogger(__name__)


class BusinessAnalysisRequest(BaseModel):
    account_id: Optional[str] = None
    business_type: str = Field(min_length=1, max_length=64)
    revenue: float = Field(ge=0)
    profit: float
    age: float = Field(default=0, ge=0)
    churn: float = Field(default=0, ge=0, le=100)
    description: str = Field(default="", max_length=5000)


class WebsiteAnalysisRequest(BaseModel):
    account_id: Optional[str] = None
    url: str = Field(min_length=4, max_length=2048)
    notes: Optional[str] = Field(default=None, max_length=5000)


class DocumentAnalysisRequest(BaseModel):
    account_id: Optional[str] = None
    text: str = Field(min_length=1, max_length=200_000)
    filename: Optional[str] = Field(default=None, max_length=255)


class ChatRequest(BaseModel):
    account_id: Optional[str] = None
    message: str = Field(min_length=1, max_length=8000)


async def _run_priced_feature(
    feature: str,
    account_id: str,
    payload: Dict[str, Any],
    db: AsyncSession,
) -> Dict[str, Any]:
    async def work() -> Dict[str, Any]:
        return await run_analysis(feature, payload)

    try:
        gated = await run_gated_feature(account_id, db, feature=feature, work=work)
    except ConsumeFailed as exc:
        logger.error(
            "Feature %s ran for %s but was not charged (invocation %s)",
            feature,
            account_id,
            exc.invocation_id,
        )
        raise ledger_http_exception(exc) from exc
    except LedgerError as exc:
        raise ledger_http_exception(exc) from exc

    return {"feature": feature, "result": gated.result, "credits": gated.credits_payload()}


@router.post("/business")
async def analyze_business(
    request: BusinessAnalysisRequest,
    _rate_limit: None = Depends(rate_limit("analysis", limit=60, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_account_id = ensure_account_scope(auth.account_id, request.account_id)
    payload = request.model_dump(exclude={"account_id"})
    return await _run_priced_feature("business_analysis", scoped_account_id, payload, db)


@router.post("/website")
async def analyze_website(
    request: WebsiteAnalysisRequest,
    _rate_limit: None = Depends(rate_limit("analysis", limit=60, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_account_id = ensure_account_scope(auth.account_id, request.account_id)
    url = request.url.strip()
    if not url.startswith(("http://", "https://")):
        raise HTTPException(status_code=422, detail="url must start with http:// or https://")
    payload = request.model_dump(exclude={"account_id"})
    payload["url"] = url
    return await _run_priced_feature("website_analysis", scoped_account_id, payload, db)


@router.post("/documents")
async def analyze_documents(
    request: DocumentAnalysisRequest,
    _rate_limit: None = Depends(rate_limit("analysis", limit=60, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_account_id = ensure_account_scope(auth.account_id, request.account_id)
    payload = request.model_dump(exclude={"account_id"})
    return await _run_priced_feature("document_analysis", scoped_account_id, payload, db)


@router.post("/chat")
async def chat(
    request: ChatRequest,
    _rate_limit: None = Depends(rate_limit("chat", limit=240, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_account_id = ensure_account_scope(auth.account_id, request.account_id)
    payload = request.model_dump(exclude={"account_id"})
    return await _run_priced_feature("chat", scoped_account_id, payload, db)
