"""Episode inference, folder listing and resume planning tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from watchlist.episodes import (
    EpisodeFile,
    build_playback_plan,
    infer_episode_number,
    list_episodes,
    load_linked_episodes,
    resolve_start_index,
    sort_episodes,
    split_queue_for_inline_playback,
    supports_inline_playback,
)
from watchlist.errors import NoEpisodesFound, NotLinked
from watchlist.folder_access import LocalFolderAccessProvider
from watchlist.models import PlaybackProgress


@pytest.mark.parametrize(
    ("filename", "expected"),
    [
        ("Show - Episode 07.mkv", 7),
        ("Show_S02E15.mp4", 15),
        ("Show 3.mp4", 3),
        ("Show.mp4", None),
        ("Series ep.12 [1080].mkv", 12),
        ("Show 2 - E05.mp4", 5),
    ],
)
def test_infer_episode_number(filename: str, expected: int | None) -> None:
    assert infer_episode_number(filename) == expected


def test_explicit_marker_wins_over_earlier_bare_number() -> None:
    assert infer_episode_number("Season 1 Episode 4.mkv") == 4


def test_bare_numbers_inside_words_are_ignored() -> None:
    assert infer_episode_number("Title x264.mkv") is None


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"")
    return path


def test_listing_orders_numbered_before_unnumbered(tmp_path: Path) -> None:
    _touch(tmp_path / "Z.mp4")
    _touch(tmp_path / "C - 03.mp4")
    _touch(tmp_path / "A - ep1.mp4")
    _touch(tmp_path / "nested" / "B 2.mkv")

    episodes = list_episodes(tmp_path)

    assert [episode.display_name for episode in episodes] == [
        "A - ep1.mp4",
        "B 2.mkv",
        "C - 03.mp4",
        "Z.mp4",
    ]
    assert [episode.episode_number for episode in episodes] == [1, 2, 3, None]


def test_listing_skips_hidden_entries_packages_and_other_files(tmp_path: Path) -> None:
    _touch(tmp_path / "Episode 1.mp4")
    _touch(tmp_path / ".Episode 2.mp4")
    _touch(tmp_path / ".hidden" / "Episode 3.mp4")
    _touch(tmp_path / "Player.app" / "Episode 4.mp4")
    _touch(tmp_path / "notes.txt")

    episodes = list_episodes(tmp_path)

    assert [episode.display_name for episode in episodes] == ["Episode 1.mp4"]


def test_listing_respects_configured_extensions(tmp_path: Path) -> None:
    _touch(tmp_path / "Episode 1.webm")
    _touch(tmp_path / "Episode 2.mp4")

    episodes = list_episodes(tmp_path, extensions=(".WEBM",))

    assert [episode.display_name for episode in episodes] == ["Episode 1.webm"]


def test_listing_empty_folder_raises(tmp_path: Path) -> None:
    _touch(tmp_path / "cover.jpg")

    with pytest.raises(NoEpisodesFound):
        list_episodes(tmp_path)


def test_unnumbered_files_use_natural_name_order() -> None:
    episodes = sort_episodes(
        EpisodeFile.from_path(name) for name in ["Extra10.mp4", "Extra9.mp4", "Bonus.mp4"]
    )
    assert [episode.display_name for episode in episodes] == [
        "Bonus.mp4",
        "Extra9.mp4",
        "Extra10.mp4",
    ]


def test_episode_identity_is_the_path() -> None:
    first = EpisodeFile(path=Path("/media/a.mp4"), display_name="a", episode_number=1)
    second = EpisodeFile(path=Path("/media/a.mp4"), display_name="other")

    assert first == second
    assert len({first, second}) == 1
    assert first.id == "/media/a.mp4"


def test_linked_listing_requires_a_link() -> None:
    with pytest.raises(NotLinked):
        load_linked_episodes(LocalFolderAccessProvider(), None)


def test_linked_listing_releases_folder_access(tmp_path: Path) -> None:
    _touch(tmp_path / "Episode 1.mp4")
    provider = LocalFolderAccessProvider()
    link = provider.link(tmp_path)

    episodes = load_linked_episodes(provider, link.bookmark)

    assert len(episodes) == 1
    assert not provider.is_active(tmp_path.resolve())


def test_inline_playback_support_by_extension() -> None:
    assert supports_inline_playback("a.MP4")
    assert supports_inline_playback("b.mov")
    assert not supports_inline_playback("c.mkv")


def test_queue_split_stops_at_first_unsupported_file() -> None:
    queue = [EpisodeFile.from_path(f"/m/Episode {n}.{ext}") for n, ext in
             [(1, "mp4"), (2, "mkv"), (3, "mp4")]]

    playable, unsupported = split_queue_for_inline_playback(queue)

    assert [episode.episode_number for episode in playable] == [1]
    assert unsupported is not None and unsupported.episode_number == 2


def test_start_index_falls_back_to_position_for_unnumbered_files() -> None:
    episodes = [EpisodeFile.from_path(f"/m/{name}.mp4") for name in ["Alpha", "Beta", "Gamma"]]
    progress = PlaybackProgress(episode_number=2, offset_seconds=12)

    assert resolve_start_index(episodes, progress) == 1
    assert resolve_start_index(episodes, None) == 0
    assert resolve_start_index(
        episodes, PlaybackProgress(episode_number=9, offset_seconds=1)
    ) == 0


def test_playback_plan_resumes_from_saved_episode() -> None:
    episodes = [EpisodeFile.from_path(f"/m/Episode {n}.mp4") for n in (1, 2, 3)]
    progress = PlaybackProgress(episode_number=2, offset_seconds=95.0)

    plan = build_playback_plan(episodes, progress)

    assert plan.base_index == 1
    assert [episode.episode_number for episode in plan.queue] == [2, 3]
    assert plan.initial_progress == progress
    assert plan.unsupported_fallback is None
    assert plan.is_playable


def test_playback_plan_with_unsupported_first_item_is_not_playable() -> None:
    episodes = [EpisodeFile.from_path("/m/Episode 1.mkv")]

    plan = build_playback_plan(episodes, None)

    assert not plan.is_playable
    assert plan.unsupported_fallback == episodes[0]


def test_listing_tolerates_non_decimal_digit_characters(tmp_path: Path) -> None:
    _touch(tmp_path / "Show 01²2.mp4")
    _touch(tmp_path / "Show Special.mp4")

    episodes = list_episodes(tmp_path)

    assert {episode.display_name for episode in episodes} == {
        "Show 01²2.mp4",
        "Show Special.mp4",
    }
