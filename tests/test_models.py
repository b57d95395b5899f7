import pytest

from patchmanager.models import PatchEdge, PatchSet


def test_patch_edge_rejects_non_increasing_versions():
    with pytest.raises(ValueError):
        PatchEdge(3, 3)
    with pytest.raises(ValueError):
        PatchEdge(4, 2)
    with pytest.raises(ValueError):
        PatchEdge(-1, 2)


def test_patch_edge_full_install_flag():
    assert PatchEdge(0, 5).is_full_install
    assert not PatchEdge(4, 5).is_full_install


def test_patch_set_deduplicates_and_keeps_sizes_for_known_edges():
    ps = PatchSet('release', [PatchEdge(0, 1), PatchEdge(0, 1), PatchEdge(1, 3)],
                  sizes={PatchEdge(0, 1): 10, PatchEdge(5, 6): 99})

    assert len(ps) == 2
    assert ps.targets() == [1, 3]
    assert ps.size_of(PatchEdge(0, 1)) == 10
    assert ps.size_of(PatchEdge(1, 3)) is None
    assert PatchEdge(5, 6) not in ps.sizes
    assert ps.from_source(1) == [PatchEdge(1, 3)]


def test_patch_set_sizes_are_read_only():
    ps = PatchSet('release', [PatchEdge(0, 1)], sizes={PatchEdge(0, 1): 10})
    with pytest.raises(TypeError):
        ps.sizes[PatchEdge(0, 1)] = 11
