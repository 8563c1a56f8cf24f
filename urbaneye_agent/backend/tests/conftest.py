import pytest

from services.automation_config import AutomationConfig, InferenceSettings

from doubles import InMemoryStore


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def offline_config() -> AutomationConfig:
    """AI switched off: everything goes through keyword scoring"""
    return AutomationConfig(inference=InferenceSettings(enabled=False, api_key=None))


@pytest.fixture()
def ai_config() -> AutomationConfig:
    return AutomationConfig(inference=InferenceSettings(enabled=True, api_key="test-key"))
