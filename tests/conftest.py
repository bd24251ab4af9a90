from datetime import datetime

import pytest

from director.clients.s3_storage import S3StorageClient
from director.models.domain import Pacing, StyleProfile
from director.services.retry import RetryPolicy
from director.storage.database import create_db_engine, create_session_factory, init_db


async def no_sleep(_delay: float) -> None:
    return None


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def sessions(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'director.db'}")
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def storage():
    return S3StorageClient(bucket="video-assets", access_key=None, secret_key=None)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 1, 1, 12, 0, 0))


@pytest.fixture
def fast_policy():
    return RetryPolicy(max_attempts=3, backoff=lambda attempt: 0.0, sleep=no_sleep)


@pytest.fixture
def style():
    return StyleProfile(
        template_id="cinematic_story",
        style_preset="Photorealistic Cinematic",
        visual_style_suffix="Cinematic lighting",
        visual_negative_prompt="cartoon",
        voice_id="rachel",
        motion_strength=2,
        pacing=Pacing.NORMAL,
    )
