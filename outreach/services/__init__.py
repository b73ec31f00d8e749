# outreach/services/__init__.py
"""
Service layer initialization.
Provides configured instances of the campaign services.
"""
from typing import Optional

from outreach.core.config import EngineConfig
from outreach.services.campaign_engine import CampaignExecutionEngine
from outreach.services.scheduler import CampaignScheduler

# Global engine configuration
_config: Optional[EngineConfig] = None

def set_engine_config(config: EngineConfig):
    """Override the configuration used by the factories below"""
    global _config
    _config = config

def get_engine_config() -> EngineConfig:
    """Get engine configuration, read from the environment on first use"""
    global _config
    if _config is None:
        _config = EngineConfig.from_env()
    return _config

def get_campaign_engine() -> CampaignExecutionEngine:
    """Get CampaignExecutionEngine wired with the configured senders"""
    return CampaignExecutionEngine(config=get_engine_config())

def get_scheduler() -> CampaignScheduler:
    """Get CampaignScheduler over a fresh engine"""
    return CampaignScheduler(get_campaign_engine())

__all__ = [
    'CampaignExecutionEngine',
    'CampaignScheduler',
    'set_engine_config',
    'get_engine_config',
    'get_campaign_engine',
    'get_scheduler'
]
