import asyncio
import zipfile
from io import BytesIO

import httpx

from services.gallery_service import GalleryStore, GenerationResult, build_zip


def make_gallery(count):
    gallery = GalleryStore()
    results = [GenerationResult(result_url=f"https://replicate.delivery/{n}.jpg", filename=f"AB-C-{n}.jpg") for n in range(1, count + 1)]
    for result in results:
        gallery.add(result)
    return gallery, results


def test_newest_first():
    gallery, results = make_gallery(3)
    assert [i.filename for i in gallery.items()] == ["AB-C-3.jpg", "AB-C-2.jpg", "AB-C-1.jpg"]
    assert gallery.get(results[0].id) is results[0]


def test_delete_is_idempotent():
    gallery, results = make_gallery(3)
    target = results[1].id

    assert gallery.delete({target}) == 1
    assert gallery.delete({target}) == 0
    assert target not in [i.id for i in gallery.items()]
    assert len(gallery) == 2


def test_delete_many_ignores_unknown_ids():
    gallery, results = make_gallery(3)
    assert gallery.delete([results[0].id, results[2].id, "nope"]) == 2
    assert [i.id for i in gallery.items()] == [results[1].id]


def test_download_many_keeps_gallery_order_and_skips_failures():
    gallery, results = make_gallery(3)
    requested = []

    def handler(request):
        requested.append(request.url.path)
        if request.url.path == "/2.jpg":
            return httpx.Response(500, text="boom")
        return httpx.Response(200, content=request.url.path.encode())

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await gallery.download_many(gallery.items(), client=client, delay=0)

    files = asyncio.run(run())
    assert requested == ["/3.jpg", "/2.jpg", "/1.jpg"]
    assert files == [("AB-C-3.jpg", b"/3.jpg"), ("AB-C-1.jpg", b"/1.jpg")]


def test_download_many_paces_between_items(monkeypatch):
    gallery, _ = make_gallery(3)
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr("services.gallery_service.asyncio.sleep", fake_sleep)

    def handler(request):
        return httpx.Response(200, content=b"img")

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await gallery.download_many(gallery.items(), client=client, delay=0.3)

    assert len(asyncio.run(run())) == 3
    assert sleeps == [0.3, 0.3]


def test_build_zip_suffixes_duplicate_names():
    archive = build_zip([("SJ12-A-1.jpg", b"one"), ("SJ12-A-1.jpg", b"two"), ("XY9-C-3.jpg", b"three")])
    with zipfile.ZipFile(BytesIO(archive)) as zip_file:
        assert zip_file.namelist() == ["SJ12-A-1.jpg", "SJ12-A-1 (1).jpg", "XY9-C-3.jpg"]
        assert zip_file.read("SJ12-A-1 (1).jpg") == b"two"
