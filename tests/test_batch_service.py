import asyncio

import pytest

from conftest import FakeGenerator
from services.asset_service import GarmentEntry, ModelImage
from services.batch_service import BatchOrchestrator, BatchStatus, Failure, Success
from services.errors import BatchNotReadyError, BatchRunningError
from services.gallery_service import GalleryStore
from services.image_service import to_data_url


def model(name, content_type="image/png"):
    return ModelImage(name.encode(), content_type, f"{name}.png", preview_id=f"preview-{name}")


def garment(code, content_type="image/png"):
    return GarmentEntry(code.encode(), content_type, f"{code}.png", preview_id=f"preview-{code}", style_code=code)


def model_of(call):
    # first ref is the model data URL
    return call[0]


def run_batch(orchestrator, models, garments):
    orchestrator.begin(models, garments)
    return asyncio.run(orchestrator.run())


def test_end_to_end_round_robin_and_filenames():
    fake = FakeGenerator()
    gallery = GalleryStore()
    orchestrator = BatchOrchestrator(gallery, generate=fake)
    a, b = model("A"), model("B")

    outcomes = run_batch(orchestrator, [a, b], [garment("sj12A"), garment("sj12B"), garment("xy9C")])

    assert [model_of(c) for c in fake.calls] == [to_data_url(m.content, "image/png") for m in (a, b, a)]
    assert [o.result.result.filename for o in outcomes] == ["SJ12-A-1.jpg", "SJ12-B-2.jpg", "XY9-C-3.jpg"]
    assert [i.filename for i in gallery.items()] == ["XY9-C-3.jpg", "SJ12-B-2.jpg", "SJ12-A-1.jpg"]
    assert orchestrator.status == BatchStatus.IDLE
    assert orchestrator.latest.result.filename == "XY9-C-3.jpg"
    assert orchestrator.latest.model_id == a.id


def test_model_counter_persists_across_batches():
    fake = FakeGenerator()
    orchestrator = BatchOrchestrator(GalleryStore(), generate=fake)
    models = [model("A"), model("B"), model("C")]

    for count in (2, 1, 4):
        run_batch(orchestrator, models, [garment(f"gx{n}") for n in range(count)])

    used = [model_of(c) for c in fake.calls]
    expected = [to_data_url(models[(j - 1) % 3].content, "image/png") for j in range(1, 8)]
    assert used == expected
    assert orchestrator.next_model_index == 7


def test_partial_failure_does_not_abort_batch():
    fake = FakeGenerator(fail_on={3})
    gallery = GalleryStore()
    orchestrator = BatchOrchestrator(gallery, generate=fake)

    outcomes = run_batch(orchestrator, [model("A")], [garment(f"ab{n}") for n in range(1, 6)])

    assert [o.ok for o in outcomes] == [True, True, False, True, True]
    assert isinstance(outcomes[2].result, Failure)
    assert outcomes[2].result.message == "File 3: Generation failed: upstream exploded"
    assert [i.filename for i in gallery.items()] == ["AB-5-5.jpg", "AB-4-4.jpg", "AB-2-2.jpg", "AB-1-1.jpg"]
    assert orchestrator.errors == ["File 3: Generation failed: upstream exploded"]
    assert orchestrator.status == BatchStatus.IDLE


def test_errors_accumulate_and_last_error_is_most_recent():
    fake = FakeGenerator(fail_on={1, 2})
    orchestrator = BatchOrchestrator(GalleryStore(), generate=fake)

    run_batch(orchestrator, [model("A")], [garment("aa1"), garment("aa2"), garment("aa3")])

    assert len(orchestrator.errors) == 2
    assert orchestrator.last_error.startswith("File 2:")


def test_invalid_image_fails_only_that_item():
    fake = FakeGenerator()
    orchestrator = BatchOrchestrator(GalleryStore(), generate=fake)
    bad = garment("bad1", content_type="image/gif")

    outcomes = run_batch(orchestrator, [model("A")], [garment("ok1"), bad, garment("ok2")])

    assert [o.ok for o in outcomes] == [True, False, True]
    assert outcomes[1].result.message == "File 2: Garment image: Invalid file type. Please upload a JPEG or PNG image."
    assert len(fake.calls) == 2


def test_timeout_is_recorded_as_failure():
    async def slow_generate(model_ref, garment_ref):
        await asyncio.sleep(1)
        return "https://replicate.delivery/late.jpg"

    orchestrator = BatchOrchestrator(GalleryStore(), generate=slow_generate, timeout=0.01)
    outcomes = run_batch(orchestrator, [model("A")], [garment("slow1")])

    assert outcomes[0].result.message == "File 1: Generation timed out after 0.01 seconds."
    assert len(orchestrator.gallery) == 0


def test_upload_mode_relays_both_images():
    uploads = []

    async def fake_upload(content, filename, content_type):
        uploads.append(filename)
        return f"https://api.replicate.com/v1/files/{filename}"

    fake = FakeGenerator()
    orchestrator = BatchOrchestrator(GalleryStore(), generate=fake, upload=fake_upload, reference_mode="upload")
    run_batch(orchestrator, [model("A")], [garment("up1"), garment("up2")])

    assert uploads == ["A.png", "up1.png", "A.png", "up2.png"]
    assert fake.calls[0] == ("https://api.replicate.com/v1/files/A.png", "https://api.replicate.com/v1/files/up1.png")


def test_cancellation_skips_remaining_items():
    orchestrator = BatchOrchestrator(GalleryStore())

    async def cancelling_generate(model_ref, garment_ref):
        orchestrator.cancel()
        return "https://replicate.delivery/only.jpg"

    orchestrator._generate = cancelling_generate
    outcomes = run_batch(orchestrator, [model("A")], [garment("cc1"), garment("cc2"), garment("cc3")])

    assert outcomes[0].ok
    assert [o.result.message for o in outcomes[1:]] == ["Cancelled", "Cancelled"]
    assert orchestrator.next_model_index == 1
    assert orchestrator.status == BatchStatus.IDLE


@pytest.mark.parametrize("models,garments,message", [
    ([], [garment("ab1")], "model image"),
    ([model("A")], [], "garment image"),
    ([model("A")], [garment("x")], "style code"),
])
def test_preconditions(models, garments, message):
    orchestrator = BatchOrchestrator(GalleryStore(), generate=FakeGenerator())
    with pytest.raises(BatchNotReadyError) as excinfo:
        orchestrator.begin(models, garments)
    assert message in excinfo.value.message
    assert orchestrator.status == BatchStatus.IDLE


def test_cannot_begin_twice():
    orchestrator = BatchOrchestrator(GalleryStore(), generate=FakeGenerator())
    orchestrator.begin([model("A")], [garment("ab1")])
    with pytest.raises(BatchRunningError):
        orchestrator.begin([model("A")], [garment("ab1")])


def test_progress_tracking():
    seen = []
    orchestrator = BatchOrchestrator(GalleryStore())

    async def recording_generate(model_ref, garment_ref):
        seen.append((orchestrator.current_index, orchestrator.total, orchestrator.current_model_index, orchestrator.progress_percent))
        return "https://replicate.delivery/p.jpg"

    orchestrator._generate = recording_generate
    run_batch(orchestrator, [model("A"), model("B")], [garment("pp1"), garment("pp2"), garment("pp3"), garment("pp4")])

    assert seen == [(1, 4, 1, 25), (2, 4, 2, 50), (3, 4, 1, 75), (4, 4, 2, 100)]


def test_success_outcome_carries_result():
    orchestrator = BatchOrchestrator(GalleryStore(), generate=FakeGenerator())
    outcomes = run_batch(orchestrator, [model("A")], [garment("ok9")])
    assert isinstance(outcomes[0].result, Success)
    assert outcomes[0].result.result.result_url == "https://replicate.delivery/out/result-1.jpg"
