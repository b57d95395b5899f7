from patchmanager.prober import DistributionEndpoint, ProbeOutcome, VersionProber

PRIMARY = 'https://primary.example/patches'
MIRROR = 'https://mirror.example/patches'


def test_patch_url_layout():
    endpoint = DistributionEndpoint(PRIMARY + '/')
    assert endpoint.patch_url('beta', 3, 7) == f'{PRIMARY}/beta/3/7.pwr'


def test_probe_reports_existing_patch_with_size(fake_server):
    server = fake_server({f'{PRIMARY}/release/0/1.pwr': b'x' * 42})
    prober = VersionProber(DistributionEndpoint(PRIMARY), server)

    result = prober.probe('release', 0, 1)

    assert result.outcome is ProbeOutcome.EXISTS
    assert result.size == 42
    assert prober.exists('release', 0, 1)
    assert server.get_calls == []


def test_probe_distinguishes_absent_from_transport_error(fake_server):
    server = fake_server({}, unreachable=('https://down.example',))

    absent = VersionProber(DistributionEndpoint(PRIMARY), server).probe('release', 0, 9)
    broken = VersionProber(DistributionEndpoint('https://down.example'), server).probe('release', 0, 9)

    assert absent.outcome is ProbeOutcome.ABSENT
    assert absent.status_code == 404
    assert broken.outcome is ProbeOutcome.TRANSPORT_ERROR
    assert not absent.exists and not broken.exists


def test_unreachable_primary_falls_back_to_mirror(fake_server):
    server = fake_server({f'{MIRROR}/release/0/2.pwr': b'abc'}, unreachable=(PRIMARY,))
    endpoint = DistributionEndpoint(PRIMARY, mirror=MIRROR)
    prober = VersionProber(endpoint, server)

    assert prober.exists('release', 0, 2)
    assert endpoint.active_base == MIRROR
    assert endpoint.patch_url('release', 0, 2) == f'{MIRROR}/release/0/2.pwr'

    # the reachable base is tried first from now on
    server.head_calls.clear()
    prober.exists('release', 0, 3)
    assert server.head_calls == [f'{MIRROR}/release/0/3.pwr']


def test_definite_miss_on_primary_does_not_consult_mirror(fake_server):
    server = fake_server({f'{MIRROR}/release/0/2.pwr': b'abc'})
    prober = VersionProber(DistributionEndpoint(PRIMARY, mirror=MIRROR), server)

    assert not prober.exists('release', 0, 2)
    assert server.head_calls == [f'{PRIMARY}/release/0/2.pwr']


def test_prefer_mirror_orders_mirror_first():
    endpoint = DistributionEndpoint(PRIMARY, mirror=MIRROR, prefer_mirror=True)
    assert endpoint.bases() == [MIRROR, PRIMARY]
    assert DistributionEndpoint(PRIMARY, prefer_mirror=True).bases() == [PRIMARY]
