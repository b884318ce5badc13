# command_center/model_props.py
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple
from pathlib import Path
import os
import commentjson

from dotenv import load_dotenv
load_dotenv()
LLM_PRICING_ENV_PATH = os.getenv("LLM_PRICING_ENV_PATH")

_PRICING_CONFIG: Optional[Dict[str, Any]] = None


def _load_pricing_config() -> Dict[str, Any]:
    """
    Load the per-model price table from a JSON-with-comments file.
    Without LLM_PRICING_ENV_PATH usage is still counted but costs stay at 0.
    A configured path that is missing or malformed fails fast.
    """
    global _PRICING_CONFIG
    if _PRICING_CONFIG is not None:
        return _PRICING_CONFIG

    if not LLM_PRICING_ENV_PATH:
        _PRICING_CONFIG = {"MODEL_BASE_PRICE_TABLE": {}}
        return _PRICING_CONFIG

    cfg_path = Path(LLM_PRICING_ENV_PATH)
    if not cfg_path.exists():
        raise FileNotFoundError(
            f"LLM pricing config file not found at '{cfg_path}'. "
        )

    with cfg_path.open("r", encoding="utf-8") as f:
        data = commentjson.load(f)

    if "MODEL_BASE_PRICE_TABLE" not in data or not isinstance(data["MODEL_BASE_PRICE_TABLE"], dict):
        raise ValueError("Pricing config missing or invalid key: MODEL_BASE_PRICE_TABLE")

    _PRICING_CONFIG = data
    return _PRICING_CONFIG

#! PRICING API

def _per_million(rate_usd: float, tokens: int) -> float:
    if rate_usd <= 0.0 or tokens <= 0:
        return 0.0
    return rate_usd * (tokens / 1_000_000.0)

def estimate_cost_usd(
    llm_model_name: str,
    prompt_tokens: int,
    completion_tokens: int,
    service_tier: str = None,
) -> float:
    """
    Estimate USD cost for a single request from per-1M-token prices.

    - OpenAI models are priced per service tier ("default" when the tier has no row).
    - Vertex models with a long band switch rates once prompt_tokens exceeds long_threshold_tokens.
    - Models missing from the table cost 0.
    """
    pricing = _load_pricing_config()["MODEL_BASE_PRICE_TABLE"].get(llm_model_name)
    if pricing is None:
        return 0.0

    # !OpenAI Models
    if is_openai_model(llm_model_name):
        pricing = pricing.get(service_tier, pricing.get("default", None))
        if not pricing:
            raise ValueError(f"Missing Price Tiers for GPT Model {llm_model_name}")
        in_rate = pricing["input_short"]
        out_rate = pricing["output_short"]
    # !VertexAI Models
    elif pricing.get("long_threshold_tokens", None) is not None and pricing.get("input_long", None) is not None:
        if prompt_tokens > pricing["long_threshold_tokens"]:
            in_rate = pricing["input_long"]
            out_rate = pricing["output_long"] if pricing.get("output_long") is not None else pricing["output_short"]
        else:
            in_rate = pricing["input_short"]
            out_rate = pricing["output_short"]
    else:
        in_rate = pricing["input_short"]
        out_rate = pricing["output_short"]

    return float(_per_million(in_rate, prompt_tokens) + _per_million(out_rate, completion_tokens))


# !######################################################################################################
#! UTILS
# !######################################################################################################

def is_openai_model(model_name) -> bool:
    # keep it simple; adjust if you start using exotic names
    prefixes = ("gpt-", "gpt4", "gpt-4", "gpt-5")
    return any(model_name.startswith(p) for p in prefixes)

def parse_model_name(raw: str) -> Tuple[str, Dict[str, Any]]:
    """Parse strings like:
        - 'gpt-5.1_low_low'
        - 'gpt-5.1_standard'
        - 'gpt-5.1_fast'
    into (base_model, openai_params).
    """
    raw = (raw or "").strip()
    if not raw:
        raise ValueError(f"parse_model_name: No Model Name passed. ")

    parts = raw.split("_")
    base = parts[0]
    if len(parts) <= 1:
        return base, {}

    verbosity: Optional[str] = None
    reasoning_effort: Optional[str] = None
    service_tier: Optional[str] = None

    verbosity_tokens = {"low", "medium", "high"}
    reasoning_tokens = {"none", "minimal", "low", "medium", "high"}
    service_tier_tokens = {"auto", "default", "flex", "priority"}

    # Draft extraction is a short structured answer: presets lean to low verbosity
    wildcards: Dict[str, Tuple[Optional[str], Optional[str], Optional[str]]] = {
        "standard": ("low", "low", None),
        "std": ("low", "low", None),
        "fast": ("low", "none", None),
        "deep": ("medium", "high", None),
        "standard-flex": ("low", "low", "flex"),
        "fast-flex": ("low", "none", "flex"),
        "standard-priority": ("low", "low", "priority"),
    }

    unknown = []
    for tok in parts[1:]:
        t = tok.strip().lower()
        if not t:
            continue

        # 1) Wildcard presets
        if t in wildcards:
            w_verb, w_reason, w_tier = wildcards[t]
            if verbosity is None and w_verb is not None:
                verbosity = w_verb
            if reasoning_effort is None and w_reason is not None:
                reasoning_effort = w_reason
            if service_tier is None and w_tier is not None:
                service_tier = w_tier
            continue

        # 2) Explicit verbosity token
        if verbosity is None and t in verbosity_tokens:
            verbosity = t
            continue

        # 3) Explicit reasoning token
        if reasoning_effort is None and t in reasoning_tokens:
            reasoning_effort = t
            continue

        # 4) Explicit service tier token (flex/priority/default/auto)
        if service_tier is None and t in service_tier_tokens:
            service_tier = t
            continue

        unknown.append(t)

    if unknown:
        raise ValueError(f"parse_model_name: Unknown model suffix token(s) {unknown} in '{raw}'. ")

    params: Dict[str, Any] = {}
    if verbosity is not None:
        params.setdefault("text", {})["verbosity"] = verbosity
    if reasoning_effort is not None:
        params.setdefault("reasoning", {})["effort"] = reasoning_effort
    params["service_tier"] = service_tier or "default"

    return base, params
