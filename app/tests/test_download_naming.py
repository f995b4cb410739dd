from __future__ import annotations

from pathlib import Path

from mediarelay.download import formats
from mediarelay.download.models import QualitySpec
from mediarelay.download.naming import (
    download_link,
    media_id_from_url,
    output_template,
    playlist_child_id,
    playlist_job_id,
    sanitize_filename,
    single_job_id,
    temp_artifact_patterns,
    unique_folder,
)


def test_sanitize_filename() -> None:
    assert sanitize_filename("A: B/C?") == "A__B_C_"
    assert sanitize_filename("  ") == "downloaded_media"
    assert sanitize_filename(None) == "downloaded_media"
    assert len(sanitize_filename("x" * 500)) == 180


def test_unique_folder_appends_counter(tmp_path: Path) -> None:
    assert unique_folder(tmp_path, "My Mix") == tmp_path / "My_Mix"

    (tmp_path / "My_Mix").mkdir()
    assert unique_folder(tmp_path, "My Mix") == tmp_path / "My_Mix (1)"

    (tmp_path / "My_Mix (1)").mkdir()
    assert unique_folder(tmp_path, "My Mix") == tmp_path / "My_Mix (2)"


def test_media_id_from_url() -> None:
    assert media_id_from_url("https://www.youtube.com/watch?v=abc123&t=4") == "abc123"
    assert media_id_from_url("https://youtu.be/xyz789?si=share") == "xyz789"
    assert media_id_from_url("https://www.instagram.com/reel/CxYz123/") == "CxYz123"
    assert media_id_from_url("not a url") == "not a url"


def test_job_identifiers() -> None:
    clock = lambda: 1700000000.0  # noqa: E731

    assert (
        single_job_id("youtube", "https://www.youtube.com/watch?v=abc", suffix="k2j9x")
        == "youtube_abc_k2j9x"
    )
    generated = single_job_id("youtube", "https://www.youtube.com/watch?v=abc")
    assert generated.startswith("youtube_abc_")
    assert len(generated.rsplit("_", 1)[1]) == 5

    parent = playlist_job_id("youtube", clock)
    assert parent.startswith("playlist_youtube_1700000000000_")
    assert playlist_child_id("youtube", "vid1", 2, clock) == "youtube_vid1_1700000000000_2"


def test_output_templates(tmp_path: Path) -> None:
    single = output_template(tmp_path, source="youtube", title="My Clip", job_id="job1")
    numbered = output_template(
        tmp_path,
        source="youtube",
        title="Song",
        job_id="job2",
        playlist=True,
        playlist_index=4,
        numbered=True,
    )
    plain = output_template(
        tmp_path, source="youtube", title="Song", job_id="job3", playlist=True, playlist_index=4
    )

    assert single == str(tmp_path / "youtube_My_Clip_job1.%(ext)s")
    assert numbered == str(tmp_path / "youtube_playlist_5_Song.%(ext)s")
    assert plain == str(tmp_path / "youtube_playlist_Song.%(ext)s")


def test_temp_artifact_patterns_cover_partial_files(tmp_path: Path) -> None:
    patterns = temp_artifact_patterns(str(tmp_path / "clip.%(ext)s"))

    assert str(tmp_path / "clip.part") in patterns
    assert str(tmp_path / "clip.*.part") in patterns
    assert str(tmp_path / "clip.fixed.mp4") in patterns


def test_download_link_is_relative_and_quoted(tmp_path: Path) -> None:
    nested = tmp_path / "My Mix" / "clip.mp4"

    assert download_link(nested, tmp_path) == "/downloads/My%20Mix/clip.mp4"
    assert download_link(Path("/elsewhere/clip.mp4"), tmp_path) == "/downloads/clip.mp4"


def test_quality_parsing() -> None:
    assert QualitySpec.parse("1080p").target == 1080
    assert QualitySpec.parse(720).target == 720
    assert QualitySpec.parse("best").is_best
    assert QualitySpec.parse(None).is_best
    assert QualitySpec.parse(0).is_best
    assert QualitySpec.parse(True).is_best
    assert QualitySpec.parse("auto").is_best


def test_video_selectors() -> None:
    best_mp4 = formats.video_selector("mp4", QualitySpec())
    assert best_mp4.startswith("bestvideo[ext=mp4]+bestaudio[ext=m4a][acodec^=mp4a]")
    assert best_mp4.endswith("/bestvideo+bestaudio/best")

    assert formats.video_selector("mkv", QualitySpec(720)) == (
        "bestvideo[height=720]+bestaudio/bestvideo[height<=720]+bestaudio/best"
    )
    assert formats.video_selector("webm", QualitySpec(480)).startswith(
        "bestvideo[ext=webm][height<=480]+bestaudio[acodec=opus]"
    )


def test_tool_arguments_per_container() -> None:
    avi = formats.video_args("avi", QualitySpec())
    mov = formats.video_args("mov", QualitySpec())

    assert avi[-4:] == ["--merge-output-format", "avi", "--recode-video", "avi"]
    assert mov[-2:] == ["--merge-output-format", "mp4"]
    assert formats.audio_args("mp3", QualitySpec()) == [
        "-f",
        "bestaudio/best",
        "--extract-audio",
        "--audio-format",
        "mp3",
        "--audio-quality",
        "0",
    ]
    assert formats.audio_selector(QualitySpec(128)) == "bestaudio[abr<=128]/bestaudio"


def test_available_qualities_are_unique_and_sorted() -> None:
    listed = formats.available_qualities(
        [{"height": 1080}, {"height": 144}, {"height": 720}, {"height": 1080}, {"height": None}]
    )

    assert listed == [1080, 720]


def test_estimate_size_for_audio_and_video() -> None:
    info = {
        "duration": 60,
        "formats": [
            {"height": 1080, "vcodec": "vp9", "acodec": "none", "filesize": 5_000_000},
            {"height": 480, "vcodec": "avc1", "acodec": "none", "filesize": 1_000_000},
            {"vcodec": "none", "acodec": "opus", "abr": 160, "filesize": 300_000},
            {"vcodec": "none", "acodec": "mp4a", "abr": 64, "filesize": 100_000},
        ],
    }

    assert formats.estimate_size(info, "mp3", QualitySpec()) == 315_000
    assert formats.estimate_size(info, "flac", QualitySpec()) == 345_000
    assert formats.estimate_size(info, "mp4", QualitySpec()) == 5_618_000
    assert formats.estimate_size(info, "mp4", QualitySpec(480)) == 1_378_000


def test_estimate_size_falls_back_to_bitrate() -> None:
    assert formats.estimate_size({"duration": 100, "tbr": 1000}, "mp4", QualitySpec()) == 12_500_000
    assert formats.estimate_size({}, "mp4", QualitySpec()) is None
