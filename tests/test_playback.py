"""Playback queue controller behaviour tests."""

from __future__ import annotations

import asyncio
import gc
from pathlib import Path
from typing import Any

import pytest

from watchlist.config import Settings
from watchlist.episodes import EpisodeFile, build_playback_plan
from watchlist.folder_access import LocalFolderAccessProvider
from watchlist.models import LibraryEntry, MediaItem, PlaybackProgress
from watchlist.playback import PlaybackQueueController, PlaybackState
from watchlist.player import HeadlessPlayer
from watchlist.progress import PlaybackProgressStore
from watchlist.storage import MemoryStorage

ITEM_ID = 5114


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def make_episodes(folder: Path, *names: str) -> list[EpisodeFile]:
    folder.mkdir(parents=True, exist_ok=True)
    episodes = []
    for name in names:
        path = folder / name
        path.write_bytes(b"")
        episodes.append(EpisodeFile.from_path(path))
    return episodes


def make_controller(
    episodes: list[EpisodeFile],
    *,
    store: PlaybackProgressStore | None = None,
    player: HeadlessPlayer | None = None,
    clock: FakeClock | None = None,
    sample_interval: float = 3_600,
    **kwargs: Any,
) -> tuple[PlaybackQueueController, HeadlessPlayer, PlaybackProgressStore]:
    store = store or PlaybackProgressStore(MemoryStorage())
    player = player or HeadlessPlayer()
    controller = PlaybackQueueController(
        ITEM_ID,
        "Fullmetal Alchemist",
        episodes,
        player=player,
        progress_store=store,
        sample_interval=sample_interval,
        clock=clock or FakeClock(),
        **kwargs,
    )
    return controller, player, store


def test_empty_queue_is_rejected() -> None:
    with pytest.raises(ValueError):
        make_controller([])


def test_bookmark_requires_access_provider(tmp_path: Path) -> None:
    episodes = make_episodes(tmp_path, "Episode 1.mp4")

    with pytest.raises(ValueError):
        make_controller(episodes, folder_bookmark="opaque")


@pytest.mark.anyio
async def test_progress_writes_are_throttled(tmp_path: Path) -> None:
    """Twelve one-second samples after a forced start write three times."""

    clock = FakeClock()
    episodes = make_episodes(tmp_path, "Episode 1.mp4")
    controller, player, store = make_controller(episodes, clock=clock)
    writes: list[float] = []
    store.subscribe(lambda: writes.append(store.load(ITEM_ID).offset_seconds))

    await controller.start()
    for second in range(1, 13):
        clock.now = float(second)
        player.advance(1.0)
        controller.sample()
    controller.close()

    assert writes[:3] == [0.0, 5.0, 10.0]
    # close() writes the final position on top of the throttled writes.
    assert len(writes) == 4
    assert store.load(ITEM_ID).offset_seconds == 12.0


@pytest.mark.anyio
async def test_finishing_single_item_queue_clears_progress(tmp_path: Path) -> None:
    episodes = make_episodes(tmp_path, "Episode 1.mp4")
    controller, player, store = make_controller(episodes)

    await controller.start()
    player.advance(30)
    controller.sample()
    player.finish()

    assert store.load(ITEM_ID) is None
    assert controller.finished
    assert controller.state is PlaybackState.FINISHED

    controller.stop()
    assert store.load(ITEM_ID) is None


@pytest.mark.anyio
async def test_queue_advances_to_next_item(tmp_path: Path) -> None:
    episodes = make_episodes(tmp_path, "Episode 1.mp4", "Episode 2.mp4")
    controller, player, store = make_controller(episodes)

    await controller.start()
    player.finish()

    assert controller.current_index == 1
    assert player.current_path == episodes[1].path
    assert player.is_playing
    assert store.load(ITEM_ID).episode_number == 2
    assert store.load(ITEM_ID).offset_seconds == 0
    controller.close()


@pytest.mark.anyio
async def test_start_resumes_saved_offset(tmp_path: Path) -> None:
    episodes = make_episodes(tmp_path, "Episode 3.mp4", "Episode 4.mp4")
    resume = PlaybackProgress(episode_number=3, offset_seconds=42.0)
    controller, player, store = make_controller(
        episodes, base_index=2, initial_progress=resume
    )

    await controller.start()

    assert player.position == 42.0
    assert controller.position == 42.0
    assert store.load(ITEM_ID).offset_seconds == 42.0
    assert store.load(ITEM_ID).episode_number == 3
    controller.close()


@pytest.mark.anyio
async def test_unnumbered_items_record_position_from_base_index(tmp_path: Path) -> None:
    episodes = make_episodes(tmp_path, "Alpha.mp4", "Bravo.mp4")
    controller, player, store = make_controller(episodes, base_index=4)

    await controller.start()

    assert store.load(ITEM_ID).episode_number == 5
    controller.close()


@pytest.mark.anyio
async def test_unsupported_follow_up_is_requested_after_queue_ends(tmp_path: Path) -> None:
    episodes = make_episodes(tmp_path, "Episode 1.mp4")
    fallback = make_episodes(tmp_path, "Episode 2.mkv")[0]
    requested: list[EpisodeFile] = []
    controller, player, _ = make_controller(
        episodes, unsupported_fallback=fallback, on_fallback=requested.append
    )

    await controller.start()
    player.finish()

    assert controller.fallback_requested == fallback
    assert requested == [fallback]


@pytest.mark.anyio
async def test_items_outside_linked_folder_are_rejected(tmp_path: Path) -> None:
    linked = tmp_path / "linked"
    linked.mkdir()
    stray = make_episodes(tmp_path / "elsewhere", "Episode 1.mp4")
    provider = LocalFolderAccessProvider()
    link = provider.link(linked)
    controller, player, store = make_controller(
        stray, folder_bookmark=link.bookmark, folder_access=provider
    )

    await controller.start()

    assert controller.state is PlaybackState.ERROR
    assert controller.error == "Episode 1.mp4 is outside the linked folder."
    assert player.current_path is None
    assert store.load(ITEM_ID) is None
    controller.close()


@pytest.mark.anyio
async def test_stop_is_idempotent_and_releases_folder_access(tmp_path: Path) -> None:
    episodes = make_episodes(tmp_path, "Episode 1.mp4")
    provider = LocalFolderAccessProvider()
    link = provider.link(tmp_path)
    controller, player, store = make_controller(
        episodes, folder_bookmark=link.bookmark, folder_access=provider
    )
    folder = tmp_path.resolve()
    assert provider.is_active(folder)

    await controller.start()
    player.advance(12)
    controller.stop()
    controller.stop()

    assert not provider.is_active(folder)
    assert controller.state is PlaybackState.IDLE
    assert player.current_path is None
    assert store.load(ITEM_ID).offset_seconds == 12


@pytest.mark.anyio
async def test_restart_after_stop_reacquires_folder_access(tmp_path: Path) -> None:
    episodes = make_episodes(tmp_path, "Episode 1.mp4")
    provider = LocalFolderAccessProvider()
    link = provider.link(tmp_path)
    controller, player, _ = make_controller(
        episodes, folder_bookmark=link.bookmark, folder_access=provider
    )

    await controller.start()
    controller.stop()
    await controller.start()

    assert controller.is_playing
    assert provider.is_active(tmp_path.resolve())
    controller.close()
    assert not provider.is_active(tmp_path.resolve())


@pytest.mark.anyio
async def test_pausing_forces_a_write(tmp_path: Path) -> None:
    clock = FakeClock()
    episodes = make_episodes(tmp_path, "Episode 1.mp4")
    controller, player, store = make_controller(episodes, clock=clock)

    await controller.start()
    clock.now = 1.0
    player.advance(1.0)
    controller.toggle_playback()

    assert controller.state is PlaybackState.PAUSED
    assert not player.is_playing
    assert store.load(ITEM_ID).offset_seconds == 1.0

    controller.toggle_playback()
    assert controller.is_playing
    controller.close()


@pytest.mark.anyio
async def test_player_failure_moves_to_error_state(tmp_path: Path) -> None:
    episodes = make_episodes(tmp_path, "Episode 1.mp4", "Episode 2.mp4")
    controller, player, _ = make_controller(episodes)

    await controller.start()
    player.fail("unsupported codec")

    assert controller.state is PlaybackState.ERROR
    assert controller.error == "Playback failed: unsupported codec"
    assert controller.current_index == 0
    assert not player.is_playing
    controller.close()


@pytest.mark.anyio
async def test_seek_completing_after_stop_is_ignored(tmp_path: Path) -> None:
    episodes = make_episodes(tmp_path, "Episode 1.mp4")
    player = HeadlessPlayer()
    player.seek_delay = 0.05
    controller, _, store = make_controller(episodes, player=player)

    await controller.start()
    seek = asyncio.create_task(controller.seek(30.0))
    await asyncio.sleep(0)
    controller.stop()
    await seek

    assert controller.state is PlaybackState.IDLE
    assert store.load(ITEM_ID).offset_seconds == 0.0


@pytest.mark.anyio
async def test_seek_persists_new_position(tmp_path: Path) -> None:
    episodes = make_episodes(tmp_path, "Episode 1.mp4")
    controller, player, store = make_controller(episodes)
    snapshots = []
    controller.subscribe(snapshots.append)

    await controller.start()
    await controller.seek(90.0)

    assert store.load(ITEM_ID).offset_seconds == 90.0
    assert snapshots[-1].current_position_seconds == 90.0
    assert snapshots[-1].current_episode == episodes[0]
    controller.close()


@pytest.mark.anyio
async def test_restart_after_stop_resumes_saved_offset(tmp_path: Path) -> None:
    episodes = make_episodes(tmp_path, "Episode 1.mp4")
    controller, player, store = make_controller(episodes)

    await controller.start()
    player.advance(600)
    controller.stop()
    await controller.start()

    assert player.position == 600
    assert controller.position == 600
    assert store.load(ITEM_ID).offset_seconds == 600
    controller.close()


@pytest.mark.anyio
async def test_retry_after_failure_resumes_saved_offset(tmp_path: Path) -> None:
    episodes = make_episodes(tmp_path, "Episode 1.mp4")
    resume = PlaybackProgress(episode_number=1, offset_seconds=300.0)
    controller, player, store = make_controller(episodes, initial_progress=resume)

    await controller.start()
    player.advance(100)
    player.fail("decoder stalled")
    assert store.load(ITEM_ID).offset_seconds == 400

    await controller.start()

    assert controller.is_playing
    assert player.position == 400
    assert store.load(ITEM_ID).offset_seconds == 400
    controller.close()


@pytest.mark.anyio
async def test_sampler_writes_while_playing_and_stops_with_playback(
    tmp_path: Path,
) -> None:
    episodes = make_episodes(tmp_path, "Episode 1.mp4")
    controller, player, store = make_controller(
        episodes, sample_interval=0.01, write_interval=0.0
    )
    background = asyncio.all_tasks()

    await controller.start()
    assert len(asyncio.all_tasks() - background) == 1

    player.advance(5)
    await asyncio.sleep(0.05)

    assert controller.position == 5
    assert store.load(ITEM_ID).offset_seconds == 5

    controller.stop()
    await asyncio.sleep(0.02)

    assert asyncio.all_tasks() - background == set()


@pytest.mark.anyio
async def test_dropped_controller_releases_folder_access(tmp_path: Path) -> None:
    episodes = make_episodes(tmp_path, "Episode 1.mp4")
    provider = LocalFolderAccessProvider()
    link = provider.link(tmp_path)
    controller, player, store = make_controller(
        episodes,
        folder_bookmark=link.bookmark,
        folder_access=provider,
        sample_interval=0.01,
    )
    await controller.start()
    assert provider.is_active(tmp_path.resolve())

    # The player keeps callbacks bound to the controller, so drop both.
    del controller, player
    gc.collect()
    await asyncio.sleep(0.03)

    assert not provider.is_active(tmp_path.resolve())
    assert store.load(ITEM_ID).offset_seconds == 0


@pytest.mark.anyio
async def test_controller_from_plan_uses_configured_intervals(tmp_path: Path) -> None:
    episodes = make_episodes(tmp_path, "Episode 1.mp4", "Episode 2.mp4")
    provider = LocalFolderAccessProvider()
    link = provider.link(tmp_path)
    item = MediaItem.model_validate({"id": ITEM_ID, "title": "Fullmetal Alchemist"})
    entry = LibraryEntry(
        id=ITEM_ID,
        item=item,
        linked_folder_bookmark=link.bookmark,
        linked_folder_display_path=link.display_path,
    )
    resume = PlaybackProgress(episode_number=2, offset_seconds=30.0)
    plan = build_playback_plan(episodes, resume)
    config = Settings(
        _env_file=None, PROGRESS_SAMPLE_INTERVAL=0.01, PROGRESS_WRITE_INTERVAL=0
    )
    player = HeadlessPlayer()
    store = PlaybackProgressStore(MemoryStorage())

    controller = PlaybackQueueController.from_plan(
        entry,
        plan,
        player=player,
        progress_store=store,
        folder_access=provider,
        config=config,
    )
    await controller.start()
    player.advance(2)
    await asyncio.sleep(0.05)

    assert controller.base_index == 1
    assert controller.holds_folder_access
    saved = store.load(ITEM_ID)
    assert (saved.episode_number, saved.offset_seconds) == (2, 32.0)
    controller.close()
