"""Map platform post URLs to (platform, platform_id) binding keys."""

from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse


@dataclass(frozen=True)
class PlatformRef:
    platform: str
    platform_id: str


def _host_is(host: str, *domains: str) -> bool:
    return any(host == d or host.endswith("." + d) for d in domains)


def _trimmed_path(path: str) -> str:
    return path.lstrip("/").rstrip("/")


def _segments(path: str) -> list[str]:
    return [p for p in path.split("/") if p]


def parse_platform_input(
    url: str | None = None,
    platform: str | None = None,
    platform_id: str | None = None,
) -> PlatformRef | None:
    """Derive the binding key for a platform post.

    An explicit ``platform`` and ``platform_id`` take precedence over ``url``.
    Unknown hosts map to the first host label with the full URL as the ID; a
    value that is not a URL is accepted as a raw ``generic`` ID.

    Returns:
        The binding key, or None when nothing usable was given
    """
    if platform and platform_id:
        return PlatformRef(platform.lower(), platform_id)
    if not url:
        return None

    parsed = urlparse(url)
    if not parsed.scheme or not parsed.hostname:
        return PlatformRef("generic", url)

    host = parsed.hostname.lower()
    if host.startswith("www."):
        host = host[4:]
    path = parsed.path

    if _host_is(host, "youtube.com") or host == "youtu.be":
        video_id = parse_qs(parsed.query).get("v", [""])[0]
        if not video_id:
            if host == "youtu.be":
                video_id = path.lstrip("/")
            else:
                segments = _segments(path)
                video_id = segments[-1] if segments else ""
        return PlatformRef("youtube", video_id or url)

    if _host_is(host, "tiktok.com"):
        return PlatformRef("tiktok", _trimmed_path(path) or url)

    if _host_is(host, "x.com", "twitter.com"):
        segments = _segments(path)
        if "status" in segments:
            idx = segments.index("status")
            if idx + 1 < len(segments):
                return PlatformRef("x", segments[idx + 1])
        return PlatformRef("x", "/".join(segments) or url)

    if _host_is(host, "instagram.com"):
        return PlatformRef("instagram", _trimmed_path(path))

    if _host_is(host, "vimeo.com"):
        segments = _segments(path)
        return PlatformRef("vimeo", segments[-1] if segments else url)

    for name, domains in (
        ("github", ("github.com",)),
        ("discord", ("discord.com", "discord.gg")),
        ("linkedin", ("linkedin.com",)),
    ):
        if _host_is(host, *domains):
            return PlatformRef(name, _trimmed_path(path) or url)

    return PlatformRef(host.split(".")[0] or "generic", url)
