"""
Unit tests for ChunkProcessorService.

The transcoder is the stand-in from conftest: the final file holds the raw
byte count and the probe turns it back into a PCM duration.
"""

import os
from unittest.mock import AsyncMock, MagicMock

import pytest

from voicegate.services.pcm import SinePCM
from voicegate.services.voice_session_manager.manager import ActiveSession
from voicegate.utils import get_current_timestamp

GUILD_ID = "111222333444555666"
CHANNEL_ID = "444555666777888999"


@pytest.mark.unit
class TestChunkProcessorService:
    @pytest.fixture
    async def active(self, test_services) -> ActiveSession:
        session_id = await test_services.sql_voice_service_manager.insert_session(
            GUILD_ID, CHANNEL_ID, "General Voice"
        )
        return ActiveSession(
            session_id=session_id,
            guild_id=GUILD_ID,
            channel_id=CHANNEL_ID,
            channel_name="General Voice",
            transport=MagicMock(),
            started_at=get_current_timestamp(),
        )

    @pytest.fixture
    def write_raw(self, test_services, active, make_speaker):
        files = test_services.recording_file_service_manager

        async def _write(ms: int, speaker=None):
            speaker = speaker or make_speaker(1)
            paths = files.build_chunk_paths(active.session_id, speaker, get_current_timestamp())
            await files.ensure_session_dir(active.session_id)
            with open(paths.raw_path, "wb") as raw:
                raw.write(SinePCM().generate(ms))
            return paths, speaker

        return _write

    @pytest.mark.asyncio
    async def test_persists_chunk(self, test_services, active, write_raw):
        paths, speaker = await write_raw(1000)

        chunk_id = await test_services.chunk_processor_service.process(paths, speaker, active)

        assert chunk_id is not None
        assert active.chunk_count == 1
        assert not os.path.exists(paths.raw_path)
        assert os.path.exists(paths.final_path)

        (chunk,) = await test_services.sql_voice_service_manager.get_chunks_for_session(
            active.session_id
        )
        assert chunk["id"] == chunk_id
        assert chunk["filename"] == paths.relative_filename
        assert chunk["duration_ms"] == 1000
        assert chunk["file_size_bytes"] == os.path.getsize(paths.final_path)

        session = await test_services.sql_voice_service_manager.get_session(active.session_id)
        assert session["total_chunks"] == 1

    @pytest.mark.asyncio
    async def test_short_final_discarded(self, test_services, active, write_raw):
        paths, speaker = await write_raw(150)

        chunk_id = await test_services.chunk_processor_service.process(paths, speaker, active)

        assert chunk_id is None
        assert active.chunk_count == 0
        assert not os.path.exists(paths.raw_path)
        assert not os.path.exists(paths.final_path)
        assert (
            await test_services.sql_voice_service_manager.get_chunks_for_session(active.session_id)
            == []
        )

    @pytest.mark.asyncio
    async def test_duration_floor_is_inclusive(self, test_services, active, write_raw):
        paths, speaker = await write_raw(200)

        chunk_id = await test_services.chunk_processor_service.process(paths, speaker, active)

        assert chunk_id is not None

    @pytest.mark.asyncio
    async def test_transcode_failure_cleans_up(self, test_services, active, write_raw):
        paths, speaker = await write_raw(1000)
        test_services.ffmpeg_service_manager.transcode_chunk = AsyncMock(
            return_value=(False, "", "Invalid data found when processing input")
        )

        chunk_id = await test_services.chunk_processor_service.process(paths, speaker, active)

        assert chunk_id is None
        assert not os.path.exists(paths.raw_path)
        assert not os.path.exists(paths.final_path)
        assert active.chunk_count == 0

    @pytest.mark.asyncio
    async def test_unreadable_final_cleans_up(self, test_services, active, write_raw):
        paths, speaker = await write_raw(1000)
        test_services.ffmpeg_service_manager.probe_duration_ms = AsyncMock(return_value=None)

        chunk_id = await test_services.chunk_processor_service.process(paths, speaker, active)

        assert chunk_id is None
        assert not os.path.exists(paths.raw_path)
        assert not os.path.exists(paths.final_path)

    @pytest.mark.asyncio
    async def test_persist_failure_cleans_up(self, test_services, active, write_raw):
        paths, speaker = await write_raw(1000)
        test_services.sql_voice_service_manager.insert_chunk = AsyncMock(
            side_effect=ValueError("duration_ms cannot be negative")
        )

        chunk_id = await test_services.chunk_processor_service.process(paths, speaker, active)

        assert chunk_id is None
        assert not os.path.exists(paths.final_path)
        assert active.chunk_count == 0
