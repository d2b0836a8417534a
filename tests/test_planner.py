import numpy as np
import pytest

from ss_modules import DocumentExtent, Tile, TilePlanner, ViewportExtent


@pytest.fixture
def planner():
    return TilePlanner()


@pytest.mark.parametrize("doc,viewport", [
    ((1000, 1000), (1000, 1000)),
    ((300, 200), (1280, 800)),
    ((1280, 10), (1280, 800)),
])
def test_page_that_fits_gets_one_viewport_tile(planner, doc, viewport):
    tiles = planner.plan(DocumentExtent(*doc), ViewportExtent(*viewport), overlap_px=40)

    assert tiles == [Tile(index=0, origin_x=0, origin_y=0, width=viewport[0], height=viewport[1])]


def test_tall_page_without_overlap(planner):
    tiles = planner.plan(DocumentExtent(1000, 2500), ViewportExtent(1000, 1000), overlap_px=0)

    assert len(tiles) == 3
    assert [t.origin_y for t in tiles] == [0, 1000, 2000]
    assert tiles[-1].height == 500
    assert all(t.origin_x == 0 and t.width == 1000 for t in tiles)


def test_overlap_shortens_vertical_step(planner):
    tiles = planner.plan(DocumentExtent(1000, 2500), ViewportExtent(1000, 1000), overlap_px=100)

    assert [t.origin_y for t in tiles] == [0, 900, 1800]
    assert [t.height for t in tiles] == [1000, 1000, 700]


def test_wide_page_only_overflowing_horizontally(planner):
    tiles = planner.plan(DocumentExtent(2500, 500), ViewportExtent(1000, 1000), overlap_px=0)

    assert [t.origin_x for t in tiles] == [0, 1000, 2000]
    assert [t.width for t in tiles] == [1000, 1000, 500]
    assert all(t.origin_y == 0 and t.height == 500 for t in tiles)


def test_tiles_are_row_major_with_sequential_indexes(planner):
    tiles = planner.plan(DocumentExtent(2100, 2100), ViewportExtent(1000, 1000), overlap_px=50)

    keys = [(t.origin_y, t.origin_x) for t in tiles]
    assert keys == sorted(keys)
    assert [t.index for t in tiles] == list(range(len(tiles)))
    assert len({t.origin_x for t in tiles}) == 3


@pytest.mark.parametrize("doc_w,doc_h,vp_w,vp_h,overlap", [
    (100, 100, 30, 30, 0),
    (100, 250, 40, 60, 10),
    (97, 211, 50, 50, 49),
    (10, 300, 40, 70, 5),
    (300, 10, 70, 40, 0),
    (61, 61, 60, 60, 1),
    (200, 137, 33, 21, 20),
])
def test_tiles_cover_document_exactly(planner, doc_w, doc_h, vp_w, vp_h, overlap):
    tiles = planner.plan(DocumentExtent(doc_w, doc_h), ViewportExtent(vp_w, vp_h), overlap_px=overlap)

    coverage = np.zeros((doc_h, doc_w), dtype=bool)
    for t in tiles:
        assert t.origin_x >= 0 and t.origin_y >= 0
        assert t.right <= doc_w and t.bottom <= doc_h
        assert t.width <= vp_w and t.height <= vp_h
        coverage[t.origin_y:t.bottom, t.origin_x:t.right] = True

    assert coverage.all()


def test_planning_is_deterministic(planner):
    args = (DocumentExtent(1919, 7777), ViewportExtent(1280, 720), 64)

    assert planner.plan(*args) == planner.plan(*args)


@pytest.mark.parametrize("overlap", [-1, 1000, 1500])
def test_invalid_overlap_rejected(planner, overlap):
    with pytest.raises(ValueError):
        planner.plan(DocumentExtent(1000, 2500), ViewportExtent(1000, 1000), overlap_px=overlap)


def test_non_positive_extents_rejected(planner):
    with pytest.raises(ValueError):
        planner.plan(DocumentExtent(1000, 2500), ViewportExtent(0, 1000))
    with pytest.raises(ValueError):
        planner.plan(DocumentExtent(0, 2500), ViewportExtent(1000, 1000))
