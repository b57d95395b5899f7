import dataclasses

import pytest

from patchmanager.discovery import PatchGraphBuilder, build_version_list, edges_from_pairs
from patchmanager.models import PatchEdge
from patchmanager.prober import DistributionEndpoint, VersionProber

BASE = 'https://patches.example/win'


def _server(fake_server, pairs, branch='release'):
    return fake_server({f'{BASE}/{branch}/{s}/{t}.pwr': b'p' * (s + t) for s, t in pairs})


def _builder(server, **kwargs):
    return PatchGraphBuilder(VersionProber(DistributionEndpoint(BASE), server), **kwargs)


def _probed_targets(server):
    return [int(url.rsplit('/', 1)[1].split('.')[0]) for url in server.head_calls]


def test_full_installs_stop_after_five_misses_and_never_probe_past_ten(fake_server):
    server = _server(fake_server, [(0, v) for v in range(1, 6)])

    result = _builder(server).discover('release')

    assert result.max_full == 5
    assert max(_probed_targets(server)) == 10
    full_probes = [u for u in server.head_calls if '/release/0/' in u]
    assert len(full_probes) == 10
    assert result.patch_set.targets() == [1, 2, 3, 4, 5]


def test_incremental_lanes_collect_patches_ahead_of_last_full_build(fake_server):
    pairs = [(0, 1), (0, 2), (0, 3), (1, 2), (2, 3), (2, 4), (2, 7)]
    server = _server(fake_server, pairs)

    result = _builder(server).discover('release')

    assert result.max_full == 3
    assert result.patch_set.edges == {PatchEdge(s, t) for s, t in pairs}
    # lanes only run for bases below the last full build
    assert not any('/release/3/' in u for u in server.head_calls)
    assert result.patch_set.size_of(PatchEdge(2, 4)) == 6


def test_lane_gives_up_after_consecutive_misses(fake_server):
    pairs = [(0, v) for v in range(1, 16)] + [(1, 2), (1, 9)]
    server = _server(fake_server, pairs)

    result = _builder(server).discover('release')

    assert PatchEdge(1, 2) in result.patch_set
    assert PatchEdge(1, 9) not in result.patch_set
    lane_one = [u for u in server.head_calls if '/release/1/' in u]
    assert [int(u.rsplit('/', 1)[1][:-4]) for u in lane_one] == [2, 3, 4, 5, 6, 7]


def test_gap_shorter_than_threshold_is_tolerated(fake_server):
    pairs = [(0, 1), (0, 2), (0, 6)]
    server = _server(fake_server, pairs)

    result = _builder(server).discover('release')

    assert result.max_full == 6


def test_parallel_lanes_match_sequential_result(fake_server):
    pairs = [(0, v) for v in range(1, 9)] + [(1, 3), (2, 5), (3, 4), (4, 8), (5, 12), (7, 8)]

    sequential = _builder(_server(fake_server, pairs)).discover('release')
    parallel = _builder(_server(fake_server, pairs), workers=4).discover('release')

    assert parallel.patch_set == sequential.patch_set
    assert parallel.probes == sequential.probes
    assert parallel.max_full == sequential.max_full


def test_branches_are_probed_independently(fake_server):
    server = _server(fake_server, [(0, 1), (0, 2)], branch='beta')

    result = _builder(server).discover('release')

    assert len(result.patch_set) == 0
    assert result.patch_set.branch == 'release'


def test_progress_ends_at_hundred(fake_server):
    server = _server(fake_server, [(0, 1), (0, 2), (1, 2)])
    seen = []

    _builder(server).discover('release', progress=seen.append)

    assert seen[-1] == 100.0
    assert all(0 <= p <= 100 for p in seen)


def test_discovery_result_cannot_be_modified(fake_server):
    result = _builder(_server(fake_server, [(0, 1), (0, 2)])).discover('release')

    assert isinstance(result.versions, tuple)
    with pytest.raises(dataclasses.FrozenInstanceError):
        result.max_full = 99


def test_version_list_prepends_latest():
    versions = build_version_list(edges_from_pairs('beta', [(0, 2), (1, 3), (0, 1)]))

    assert [v.version for v in versions] == [3, 1, 2, 3]
    assert versions[0].is_latest
    assert versions[0].name == 'Latest'
    assert all(v.branch == 'beta' for v in versions)


def test_version_list_without_patches_offers_version_one():
    versions = build_version_list(edges_from_pairs('release', []))

    assert len(versions) == 1
    assert versions[0].is_latest and versions[0].version == 1
