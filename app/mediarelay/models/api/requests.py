"""Request payloads validated via Marshmallow schemas."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from marshmallow import ValidationError, fields, post_load, pre_load, validate

from ...config import SUPPORTED_FORMATS, MediaSource, PlaylistAction
from ...download.models import DownloadRequest, DownloadSettings, QualitySpec
from ...schemas.base import RelaySchema

# Older clients send the settings flat on the request instead of nested.
_LEGACY_SETTING_KEYS = (
    "downloadFolder",
    "maxSpeed",
    "skipDuplicates",
    "numerateFiles",
    "searchTags",
    "normalizeAudio",
)


def _clean_str(value: Any | None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class DownloadSettingsSchema(RelaySchema):
    download_folder = fields.String(load_default=None, allow_none=True)
    max_speed = fields.Integer(load_default=None, allow_none=True)
    skip_duplicates = fields.Boolean(load_default=False, allow_none=True)
    numerate_files = fields.Boolean(load_default=False, allow_none=True)
    search_tags = fields.Boolean(load_default=False, allow_none=True)
    normalize_audio = fields.Boolean(load_default=False, allow_none=True)

    @pre_load
    def _drop_blank_numbers(self, data: Any, **_: Any) -> Any:
        if isinstance(data, Mapping) and data.get("maxSpeed") in ("", None):
            mutable = dict(data)
            mutable.pop("maxSpeed", None)
            return mutable
        return data

    @post_load
    def make(self, data: dict[str, Any], **_: Any) -> DownloadSettings:
        data["download_folder"] = _clean_str(data.get("download_folder"))
        for flag in ("skip_duplicates", "numerate_files", "search_tags", "normalize_audio"):
            data[flag] = bool(data.get(flag))
        return DownloadSettings(**data)


class DownloadRequestSchema(RelaySchema):
    url = fields.String(required=True)
    format = fields.String(load_default="mp4")
    quality = fields.Raw(load_default=None, allow_none=True)
    source = fields.String(load_default=MediaSource.YOUTUBE.value)
    playlist_action = fields.String(
        load_default=PlaylistAction.SINGLE.value,
        validate=validate.OneOf([action.value for action in PlaylistAction]),
    )
    concurrency = fields.Integer(
        load_default=None, allow_none=True, validate=validate.Range(min=1)
    )
    single_concurrency = fields.Integer(
        load_default=None, allow_none=True, validate=validate.Range(min=1)
    )
    settings = fields.Nested(DownloadSettingsSchema, load_default=None, allow_none=True)

    @pre_load
    def _fold_legacy_settings(self, data: Any, **_: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        mutable = dict(data)
        nested = mutable.get("settings")
        settings = dict(nested) if isinstance(nested, Mapping) else {}
        for key in _LEGACY_SETTING_KEYS:
            if key in mutable:
                settings.setdefault(key, mutable.pop(key))
        mutable["settings"] = settings
        for key in ("concurrency", "singleConcurrency"):
            if mutable.get(key) in ("", None):
                mutable.pop(key, None)
        return mutable

    @post_load
    def make(self, data: dict[str, Any], **_: Any) -> DownloadRequest:
        url = _clean_str(data.get("url"))
        if not url:
            raise ValidationError({"url": ["Missing video URL."]})
        container = (_clean_str(data.get("format")) or "mp4").lower()
        if container not in SUPPORTED_FORMATS:
            raise ValidationError({"format": [f"Unsupported format '{container}'."]})
        return DownloadRequest(
            url=url,
            format=container,
            quality=QualitySpec.parse(data.get("quality")),
            source=(_clean_str(data.get("source")) or MediaSource.YOUTUBE.value).lower(),
            playlist_action=data["playlist_action"],
            concurrency=data.get("concurrency"),
            single_concurrency=data.get("single_concurrency"),
            settings=data.get("settings") or DownloadSettings(),
        )


@dataclass(slots=True)
class CancelRequest:
    item_id: str


class CancelRequestSchema(RelaySchema):
    item_id = fields.String(required=True, validate=validate.Length(min=1))

    @post_load
    def make(self, data: dict[str, Any], **_: Any) -> CancelRequest:
        return CancelRequest(item_id=data["item_id"].strip())


@dataclass(slots=True)
class VideoInfoRequest:
    url: str
    source: str = MediaSource.YOUTUBE.value
    quality: QualitySpec = field(default_factory=QualitySpec)
    format: str = "mp4"


class VideoInfoRequestSchema(RelaySchema):
    url = fields.String(required=True)
    source = fields.String(load_default=MediaSource.YOUTUBE.value)
    quality = fields.Raw(load_default=None, allow_none=True)
    format = fields.String(load_default="mp4")

    @post_load
    def make(self, data: dict[str, Any], **_: Any) -> VideoInfoRequest:
        url = _clean_str(data.get("url"))
        if not url:
            raise ValidationError({"url": ["URL is required."]})
        return VideoInfoRequest(
            url=url,
            source=(_clean_str(data.get("source")) or MediaSource.YOUTUBE.value).lower(),
            quality=QualitySpec.parse(data.get("quality")),
            format=(_clean_str(data.get("format")) or "mp4").lower(),
        )


class ToolUpdateRequestSchema(RelaySchema):
    force = fields.Boolean(load_default=False)

    @post_load
    def make(self, data: dict[str, Any], **_: Any) -> bool:
        return bool(data.get("force"))


__all__ = [
    "CancelRequest",
    "CancelRequestSchema",
    "DownloadRequestSchema",
    "DownloadSettingsSchema",
    "ToolUpdateRequestSchema",
    "VideoInfoRequest",
    "VideoInfoRequestSchema",
]
