"""
Tests for the testing environment setup.

This module verifies that the in-memory testing infrastructure
works correctly.
"""

import pytest
from sqlalchemy import select

from voicegate.server.sql_models import BotConfigModel


@pytest.mark.unit
@pytest.mark.asyncio
async def test_server_manager_creation(test_server_manager):
    """Test that test server manager can be created and connected."""
    assert test_server_manager is not None
    assert test_server_manager.is_initialized
    assert test_server_manager.list_servers() == ["sql"]
    assert test_server_manager.sql_client.is_connected


@pytest.mark.unit
@pytest.mark.asyncio
async def test_health_checks(test_server_manager):
    """Test that all server health checks pass."""
    health = await test_server_manager.health_check_all()

    assert health == {"sql": True}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_sql_client_operations(test_sql_client):
    """Tables are created on startup."""
    assert await test_sql_client.health_check()

    rows = await test_sql_client.execute(select(BotConfigModel))
    assert rows == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_services_seed_relay_keys(test_services, test_sql_client):
    """The relay store seeds its keys when services start."""
    rows = await test_sql_client.execute(select(BotConfigModel.key))

    assert {row["key"] for row in rows} == {
        "voice_command",
        "voice_command_result",
        "voice_command_at",
    }


@pytest.mark.unit
@pytest.mark.asyncio
async def test_context_integration(test_context, test_server_manager):
    """Test that context is properly integrated with server manager."""
    assert test_context.server_manager is test_server_manager
    assert test_context.server_manager.context is test_context
