"""Remote AI analysis calls (OpenRouter through the OpenAI SDK).

The feature gate treats ``run_analysis`` as opaque external work: it either
returns a result dict or raises ``InferenceError``.
"""

import json
import logging
from typing import Any, Dict, Optional

from openai import APIStatusError, AsyncOpenAI, OpenAIError

from config import settings

logger = logging.getLogger(__name__)

# Statuses where the primary model is retried once on the fallback model.
FALLBACK_STATUS_CODES = {400, 402, 403, 429, 503}

SUPPORTED_FEATURES = ("business_analysis", "website_analysis", "document_analysis", "chat")

REVENUE_MULTIPLIERS = {"saas": 8, "ecommerce": 3}
DEFAULT_REVENUE_MULTIPLIER = 5


class InferenceError(RuntimeError):
    """The inference provider could not produce a result."""


def get_inference_client() -> Optional[AsyncOpenAI]:
    """Get OpenRouter client, handling placeholders."""
    api_key = (settings.OPENROUTER_API_KEY or "").strip()
    if not api_key or "your_" in api_key or api_key == "test-key":
        return None
    return AsyncOpenAI(
        api_key=api_key,
        base_url=settings.OPENROUTER_BASE_URL,
        timeout=float(settings.INFERENCE_TIMEOUT_SECONDS),
        max_retries=0,
    )


def business_metrics(payload: Dict[str, Any]) -> Dict[str, float]:
    revenue = float(payload.get("revenue") or 0)
    profit = float(payload.get("profit") or 0)
    business_type = str(payload.get("business_type") or "").lower()
    multiplier = REVENUE_MULTIPLIERS.get(business_type, DEFAULT_REVENUE_MULTIPLIER)
    return {
        "profit_margin": round(profit / revenue * 100, 1) if revenue > 0 else 0.0,
        "revenue_multiplier": multiplier,
        "base_valuation": revenue * multiplier,
    }


def build_prompt(feature: str, payload: Dict[str, Any]) -> str:
    if feature == "business_analysis":
        metrics = business_metrics(payload)
        return (
            "You are an expert in business valuation and sale preparation. "
            "Produce a professional valuation report as JSON with keys "
            '"valuation" (min, optimal, max, method, justification), "key_strengths", '
            '"improvement_points", "financial_analysis" and "market_positioning".\n\n'
            f"Business type: {payload.get('business_type')}\n"
            f"Revenue: {payload.get('revenue')} EUR\n"
            f"Net profit: {payload.get('profit')} EUR\n"
            f"Age: {payload.get('age')} years\n"
            f"Churn: {payload.get('churn')}%\n"
            f"Description: {payload.get('description')}\n"
            f"Profit margin: {metrics['profit_margin']}%\n"
            f"Base valuation: {metrics['base_valuation']:.0f} EUR"
        )
    if feature == "website_analysis":
        return (
            "Analyze the business behind this website for a potential acquirer. "
            'Return JSON with keys "business_model", "target_market", "strengths", '
            '"risks" and "acquisition_score" (0-10).\n\n'
            f"URL: {payload.get('url')}\n"
            f"Notes: {payload.get('notes') or ''}"
        )
    if feature == "document_analysis":
        text = str(payload.get("text") or "")
        if len(text) > 20000:
            text = text[:20000] + "...(truncated)"
        return (
            "Summarize these business documents for a due-diligence review. "
            'Return JSON with keys "summary", "key_figures", "red_flags" and "next_steps".\n\n'
            f"{text}"
        )
    if feature == "chat":
        return str(payload.get("message") or "")
    raise InferenceError(f"Unsupported analysis feature: {feature}")


def _mock_result(feature: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    if feature == "business_analysis":
        metrics = business_metrics(payload)
        base = metrics["base_valuation"]
        return {
            "valuation": {
                "min": round(base * 0.8),
                "optimal": round(base),
                "max": round(base * 1.2),
                "method": "Adjusted revenue multiple",
                "justification": "Local fallback analysis based on revenue multiple only.",
            },
            "key_strengths": [],
            "improvement_points": [],
            "financial_analysis": {"profit_margin": metrics["profit_margin"]},
            "mock": True,
        }
    if feature == "chat":
        return {"reply": "The assistant is running in offline mode.", "mock": True}
    return {"summary": "Local fallback analysis: no inference provider configured.", "mock": True}


async def _complete(client: AsyncOpenAI, model: str, prompt: str) -> str:
    response = await client.chat.completions.create(
        model=model,
        messages=[{"role": "user", "content": prompt}],
        temperature=0.3,
        max_tokens=int(settings.INFERENCE_MAX_TOKENS),
    )
    content = response.choices[0].message.content
    if not content:
        raise InferenceError(f"Empty completion from {model}")
    return content


def _parse_result(feature: str, content: str) -> Dict[str, Any]:
    if feature == "chat":
        return {"reply": content}
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        logger.warning("Inference response for %s was not JSON; returning raw text", feature)
        return {"raw_text": content, "structured": False}
    if not isinstance(data, dict):
        return {"result": data}
    return data


async def run_analysis(feature: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    prompt = build_prompt(feature, payload)
    client = get_inference_client()
    if client is None:
        logger.warning("Using MOCK inference for %s.", feature)
        return _mock_result(feature, payload)

    try:
        content = await _complete(client, settings.INFERENCE_MODEL, prompt)
    except APIStatusError as exc:
        if exc.status_code not in FALLBACK_STATUS_CODES:
            raise InferenceError(f"Inference failed with status {exc.status_code}") from exc
        logger.warning(
            "Primary model %s failed with %s; trying fallback %s",
            settings.INFERENCE_MODEL,
            exc.status_code,
            settings.INFERENCE_FALLBACK_MODEL,
        )
        try:
            content = await _complete(client, settings.INFERENCE_FALLBACK_MODEL, prompt)
        except OpenAIError as fallback_exc:
            raise InferenceError("The AI service is currently unavailable. Please retry later.") from fallback_exc
    except OpenAIError as exc:
        raise InferenceError(f"Inference request failed: {exc}") from exc

    return _parse_result(feature, content)
