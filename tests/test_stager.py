from uuid import uuid4

from director.clients.s3_storage import StorageError
from director.models.domain import AssetKind, SceneAssetResult
from director.services.stager import AssetStager, asset_name


def narration(index, payload=b"mp3", success=True):
    return SceneAssetResult(scene_index=index, kind=AssetKind.NARRATION, success=success, payload=payload)


def visual(index, success=True):
    uri = f"https://cdn.example.com/{index}.mp4" if success else None
    return SceneAssetResult(scene_index=index, kind=AssetKind.VISUAL, success=success, uri=uri)


class FlakyStorage:
    def __init__(self, inner, fail_keys):
        self.inner = inner
        self.fail_keys = fail_keys

    def upload_bytes(self, path, content, content_type="application/octet-stream"):
        if any(path.endswith(key) for key in self.fail_keys):
            raise StorageError("S3 upload failed")
        return self.inner.upload_bytes(path, content, content_type)


def test_asset_names():
    project_id = uuid4()
    assert asset_name(project_id, 2, AssetKind.NARRATION) == f"{project_id}_scene_2_audio.mp3"
    assert asset_name(project_id, 0, AssetKind.VISUAL) == f"{project_id}_scene_0_video.mp4"


async def test_stage_uploads_narration_and_passes_visuals(storage):
    project_id = uuid4()
    stager = AssetStager(storage)

    staged = await stager.stage(
        project_id,
        "user-1",
        [narration(1, b"b"), narration(0, b"a")],
        [visual(0), visual(1)],
    )

    assert staged.scene_indices == [0, 1]
    assert staged.audio_uris == [
        f"/video-assets/temp-audio/user-1/{project_id}_scene_0_audio.mp3",
        f"/video-assets/temp-audio/user-1/{project_id}_scene_1_audio.mp3",
    ]
    assert staged.video_uris == ["https://cdn.example.com/0.mp4", "https://cdn.example.com/1.mp4"]
    assert staged.narration_uri == f"/video-assets/temp-audio/user-1/{project_id}_narration.mp3"
    assert storage.download_bytes(f"temp-audio/user-1/{project_id}_narration.mp3") == b"ab"
    assert staged.failures == []


async def test_scene_missing_an_asset_is_excluded(storage):
    project_id = uuid4()
    staged = await AssetStager(storage).stage(
        project_id,
        "u",
        [narration(0), narration(1), narration(2, success=False, payload=None)],
        [visual(0), visual(1, success=False), visual(2)],
    )

    assert staged.scene_indices == [0]
    assert len(staged.failures) == 2
    assert staged.orphan_uris == [f"/video-assets/temp-audio/u/{project_id}_scene_1_audio.mp3"]


async def test_upload_failure_is_recorded_not_raised(storage):
    project_id = uuid4()
    flaky = FlakyStorage(storage, fail_keys=["_scene_1_audio.mp3"])
    flaky.key_from_url = storage.key_from_url

    staged = await AssetStager(flaky).stage(
        project_id, "u", [narration(0), narration(1)], [visual(0), visual(1)]
    )

    assert staged.scene_indices == [0]
    failure = staged.failures[0]
    assert failure.scene_index == 1
    assert failure.kind == AssetKind.NARRATION
    assert "upload failed" in failure.error


async def test_nothing_staged_without_complete_scenes(storage):
    staged = await AssetStager(storage).stage(uuid4(), "u", [narration(0)], [visual(0, success=False)])
    assert staged.scene_indices == []
    assert staged.narration_uri is None
