import pytest

from sd_panel.host.base_host import DocumentContext, run_host_step
from sd_panel.host.result_importer import ResultImporter

from conftest import RecordingHost, make_selection

CONTEXT = DocumentContext(document_id=7)


@pytest.mark.asyncio
async def test_single_image_fitted_and_masked():
    host = RecordingHost()
    bounds = make_selection(0, 0, 100, 100).bounds

    report = await ResultImporter(host).import_results(CONTEXT, ["data:image/png;base64,QUJD"], bounds, feather=None)

    assert report.layer_ids == [101]
    assert report.group_id is None
    assert report.warnings == []
    assert host.names() == [
        "place_image",
        "set_selection_bounds",
        "resize_active_layer_to_bounds",
        "set_selection_bounds",
        "adjust_selection",
        "create_layer_mask",
        "set_selection_bounds",
        "move_active_layer_to_top",
    ]
    assert host.calls_named("place_image")[0] == (CONTEXT, "QUJD", 1)
    assert host.calls_named("adjust_selection")[0] == (CONTEXT, 8, 8)
    assert host.calls_named("create_layer_mask")[0] == (CONTEXT, True)


@pytest.mark.asyncio
async def test_multiple_images_are_grouped():
    host = RecordingHost()
    bounds = make_selection(0, 0, 256, 256).bounds

    report = await ResultImporter(host).import_results(CONTEXT, ["A", "B", "C"], bounds, group_name="castle")

    assert report.layer_ids == [101, 102, 103]
    assert report.group_id == 999
    assert host.calls_named("group_layers") == [(CONTEXT, [101, 102, 103], "castle")]
    assert host.names()[-1] == "move_active_layer_to_top"


@pytest.mark.asyncio
async def test_without_bounds_reveals_all():
    host = RecordingHost()

    await ResultImporter(host).import_results(CONTEXT, ["A"], None)

    assert host.names() == ["place_image", "create_layer_mask", "move_active_layer_to_top"]
    assert host.calls_named("create_layer_mask")[0] == (CONTEXT, False)


@pytest.mark.asyncio
async def test_cosmetic_failures_do_not_abort_import():
    host = RecordingHost()
    host.fail_steps = {"resize_active_layer_to_bounds", "create_layer_mask", "group_layers"}
    bounds = make_selection(0, 0, 256, 256).bounds

    report = await ResultImporter(host).import_results(CONTEXT, ["A", "B"], bounds)

    assert report.layer_ids == [101, 102]
    assert report.group_id is None
    assert {w.step for w in report.warnings} == {"fit layer to selection", "create selection mask", "group layers"}
    assert host.names()[-1] == "move_active_layer_to_top"


@pytest.mark.asyncio
async def test_placement_failure_propagates():
    host = RecordingHost()
    host.fail_steps = {"place_image"}

    with pytest.raises(RuntimeError):
        await ResultImporter(host).import_results(CONTEXT, ["A"], None)


@pytest.mark.asyncio
async def test_run_host_step_reports_cosmetic_failure():
    async def broken():
        raise RuntimeError("no layer")

    result = await run_host_step("fit layer", broken())
    assert not result.ok
    assert result.error == "no layer"

    with pytest.raises(RuntimeError):
        await run_host_step("place image", broken(), fatal=True)
