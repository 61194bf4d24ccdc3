# common/config_loader.py
import os
import yaml
import logging
import hashlib
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

_log = logging.getLogger("booking-engine")

def load_config() -> Dict[str, Any]:
    """Load YAML from CONFIG_PATH or ./config.yaml, with safe defaults."""
    config_path = Path(os.getenv("CONFIG_PATH", "config.yaml"))
    if not config_path.exists():
        _log.warning("Config file not found at %s. Using built-in defaults.", config_path)
        return {}
    try:
        with config_path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        _log.error("Failed to parse %s: %s. Using built-in defaults.", config_path, e)
        return {}

def cfg_get(d: Dict[str, Any], path: str, default=None):
    """Safely fetch a nested key via dotted path, e.g. cfg_get(cfg, 'tenants.acme.booking')."""
    cur = d
    for part in path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return default
        cur = cur[part]
    return cur

def mask_key(key: Optional[str]) -> str:
    if not key:
        return "<none>"
    digest = hashlib.sha256(key.encode()).hexdigest()
    return f"sha256:{digest[:8]}"


class EngineSettings(BaseModel):
    """Per-tenant engine knobs. Every field has a working default."""
    auto_confirm_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    max_attempts: int = Field(default=3, ge=1)
    pre_extracted_confidence: float = Field(default=0.9, ge=0.0, le=1.0)

    geocoding_enabled: bool = True
    calendar_enabled: bool = False
    sms_enabled: bool = False
    offer_count: int = Field(default=3, ge=1)
    timezone: str = "UTC"

    extra_stop_words: List[str] = Field(default_factory=list)

    require_city_state: bool = True
    street_prompt: str = "What's the street address?"
    missing_city_state_prompt: str = "Got it. What city and state is that in?"
    unit_prompt: str = "Is there an apartment or unit number?"
    area_code_prompt: str = "What's the area code?"
    phone_remainder_prompt: str = "And the rest of the number?"
    change_prompt: str = "What would you like to change? The name, phone number, address, or time?"

    escalation_message: str = (
        "I'm having trouble getting that information. Let me connect you with someone who can help."
    )
    error_message: str = (
        "I'm sorry, I can't book that appointment right now. Let me connect you with someone who can help."
    )


class BookingConfig(BaseModel):
    enabled: bool = True
    slots: List[Dict[str, Any]] = Field(default_factory=list)
    confirmation_template: Optional[str] = None
    completion_template: Optional[str] = None
    service_type: Optional[str] = None


class TenantConfig(BaseModel):
    tenant_id: str
    name: Optional[str] = None
    trade: Optional[str] = None
    booking: BookingConfig = Field(default_factory=BookingConfig)
    engine: EngineSettings = Field(default_factory=EngineSettings)


def load_tenant_config(tenant_id: str, cfg: Optional[Dict[str, Any]] = None) -> Optional[TenantConfig]:
    """
    Read `tenants.<tenant_id>` from the YAML config.
    Returns None when the tenant is missing or its block does not validate;
    callers fail closed on None.
    """
    cfg = load_config() if cfg is None else cfg
    raw = (cfg.get("tenants") or {}).get(tenant_id) if isinstance(cfg, dict) else None
    if not isinstance(raw, dict):
        _log.warning("No configuration for tenant %s", tenant_id)
        return None
    try:
        return TenantConfig.model_validate({**raw, "tenant_id": tenant_id})
    except ValidationError as e:
        _log.error("Invalid configuration for tenant %s: %s", tenant_id, e)
        return None


def settings_for(tenant: Optional[TenantConfig]) -> EngineSettings:
    return tenant.engine if tenant is not None else EngineSettings()
