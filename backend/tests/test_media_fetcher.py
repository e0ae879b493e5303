from __future__ import annotations

import httpx
import pytest

from company_importer.services.media_fetcher import MediaFetcher, guess_extension
from company_importer.storage.media_storage import MediaStorage

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
CHUNK = b"x" * 256
chunks_served: list[int] = []


def _counted_chunks():
    for _ in range(4096):
        chunks_served.append(1)
        yield CHUNK


def _handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/ok.png":
        return httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"})
    if path == "/page.html":
        return httpx.Response(200, content=b"<html></html>", headers={"content-type": "text/html"})
    if path == "/big.jpg":
        return httpx.Response(200, content=b"x" * 64, headers={"content-type": "image/jpeg"})
    if path == "/down.jpg":
        raise httpx.ConnectError("connection refused", request=request)
    if path == "/endless.jpg":
        return httpx.Response(
            200, content=_counted_chunks(), headers={"content-type": "image/jpeg"}
        )
    return httpx.Response(404)


@pytest.fixture()
def fetcher(tmp_path) -> MediaFetcher:
    client = httpx.Client(transport=httpx.MockTransport(_handler))
    storage = MediaStorage(base_dir=tmp_path, url_prefix="/uploads/companies")
    return MediaFetcher(storage, client=client, max_bytes=1024)


def test_one_unreachable_image_does_not_block_the_other(fetcher: MediaFetcher, tmp_path) -> None:
    result = fetcher.fetch_all(
        ["https://img.test/ok.png", "https://img.test/missing.png"], owner_id=7
    )
    assert (result.downloaded, result.failed) == (1, 1)
    stored = result.stored[0]
    assert stored.local_url.startswith("/uploads/companies/7_0_")
    assert stored.local_url.endswith(".png")
    assert stored.path.parent == tmp_path.resolve()
    assert stored.path.read_bytes() == PNG_BYTES
    assert "HTTP 404" in result.errors[0]


def test_rejects_non_image_oversize_and_network_errors(fetcher: MediaFetcher) -> None:
    result = fetcher.fetch_all(
        [
            "https://img.test/page.html",
            "https://img.test/down.jpg",
            "not a url",
        ],
        owner_id=3,
    )
    assert (result.downloaded, result.failed) == (0, 3)

    small = MediaFetcher(fetcher.storage, client=fetcher._client, max_bytes=10)
    assert small.fetch_all(["https://img.test/big.jpg"], owner_id=3).failed == 1


def test_start_index_offsets_sort_order(fetcher: MediaFetcher) -> None:
    result = fetcher.fetch_all(["https://img.test/ok.png"], owner_id=9, start_index=1)
    assert result.stored[0].sort_order == 1
    assert "/9_1_" in result.stored[0].local_url


def test_storage_delete(fetcher: MediaFetcher) -> None:
    stored = fetcher.fetch_all(["https://img.test/ok.png"], owner_id=1).stored[0]
    assert fetcher.storage.delete(stored.local_url) is True
    assert fetcher.storage.delete(stored.local_url) is False


@pytest.mark.parametrize(
    ("content_type", "url", "expected"),
    [
        ("image/webp", "https://x/y", ".webp"),
        ("image/jpeg; charset=binary", "https://x/y.png", ".jpg"),
        (None, "https://x/photo.PNG?size=2", ".png"),
        ("application/octet-stream", "https://x/y", ".jpg"),
    ],
)
def test_guess_extension(content_type, url, expected) -> None:
    assert guess_extension(content_type, url) == expected


def test_malformed_url_counts_as_one_failed_image(fetcher: MediaFetcher) -> None:
    result = fetcher.fetch_all(["https://[::1/a.jpg", "https://img.test/ok.png"], owner_id=5)

    assert (result.downloaded, result.failed) == (1, 1)
    assert result.stored[0].source_url == "https://img.test/ok.png"


def test_unsized_stream_stops_at_the_byte_cap(fetcher: MediaFetcher) -> None:
    chunks_served.clear()

    result = fetcher.fetch_all(["https://img.test/endless.jpg"], owner_id=4)

    assert (result.downloaded, result.failed) == (0, 1)
    assert "larger than 1024 bytes" in result.errors[0]
    # 1024-byte cap over 256-byte chunks: the fifth chunk trips it
    assert len(chunks_served) <= 8
