"""Tests for wire-shape parsing of the core models."""

from datetime import datetime, timezone

from storycard.models import (
    Card,
    CardMedia,
    Chapter,
    StoryMetadata,
    TokenPair,
    TranscodeResult,
    title_case,
)


def test_token_pair_from_response():
    pair = TokenPair.from_token_response(
        {"access_token": "a", "refresh_token": "r", "expires_in": 3600}, now=1000.0
    )
    assert pair.access_token == "a"
    assert pair.refresh_token == "r"
    assert pair.token_type == "Bearer"
    assert pair.expires_at == 4600.0


def test_transcode_result_flattens_info():
    result = TranscodeResult.model_validate(
        {"transcodedSha256": "h", "transcodedInfo": {"duration": 12.5, "fileSize": 10, "channels": 2}}
    )
    assert result.duration == 12.5
    assert result.file_size_bytes == 10
    assert result.channel_layout == "2"
    assert result.to_payload()["transcodedInfo"]["channels"] == "2"


def test_card_accepts_wrapped_detail():
    card = Card.model_validate(
        {
            "card": {
                "id": 42,
                "title": "You're The Hero!",
                "createdAt": "2024-06-01T10:00:00Z",
                "content": {"chapters": [{"key": "01", "title": "One", "display": {"icon16x16": "yoto:#i"}}]},
                "metadata": {"media": {"duration": 30, "fileSize": None}},
            }
        }
    )
    assert card.card_id == "42"
    assert card.chapters[0].icon == "yoto:#i"
    assert card.chapters[0].tracks == []
    assert card.aggregate_media.total_duration == 30
    assert card.aggregate_media.total_file_size_bytes == 0
    assert card.created_at == datetime(2024, 6, 1, 10, tzinfo=timezone.utc)


def test_card_with_bad_timestamp_sorts_oldest():
    card = Card.model_validate({"cardId": "c", "createdAt": "last tuesday"})
    assert card.created_at is None
    assert card.created_timestamp == float("-inf")


def test_naive_timestamp_read_as_utc():
    naive = Card.model_validate({"cardId": "c", "createdAt": "2024-01-01T00:00:00"})
    aware = Card.model_validate({"cardId": "c", "createdAt": "2024-01-01T00:00:00Z"})
    assert naive.created_timestamp == aware.created_timestamp


def test_card_media_sums_all_tracks():
    chapters = [
        Chapter.model_validate({"key": "01", "tracks": [{"duration": 10, "fileSize": 100}, {"duration": 5}]}),
        Chapter.model_validate({"key": "02", "tracks": [{"duration": 20, "fileSize": 1_048_576}]}),
    ]
    media = CardMedia.from_chapters(chapters)
    assert media.total_duration == 35
    assert media.total_file_size_bytes == 1_048_676
    assert media.to_payload()["readableFileSize"] == 1.0


def test_chapter_payload_omits_missing_icon():
    chapter = Chapter(order_key="01", title="T")
    assert chapter.to_payload() == {"key": "01", "title": "T", "tracks": []}


class TestStoryTitles:
    def test_generated_title(self):
        metadata = StoryMetadata(childName="maya", adventureType="space-explorer")
        assert metadata.chapter_title() == "Maya's Space Explorer Adventure"

    def test_explicit_title(self):
        metadata = StoryMetadata(childName="Maya", adventureType="pirate", title="into the DEEP")
        assert metadata.chapter_title() == "Into The Deep"

    def test_title_case_keeps_possessive(self):
        assert title_case("sam's big day") == "Sam's Big Day"
