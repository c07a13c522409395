from blinkchat.core.registry import ConnectionState


def _assert_symmetric(hub):
    for client in hub.registry:
        if client.partner_id is not None:
            partner = hub.registry.lookup(client.partner_id)
            assert partner.partner_id == client.client_id
            assert partner.client_id != client.client_id


def test_first_client_waits_then_both_match(hub, make_link):
    a, b = make_link(), make_link()
    a_id = hub.connect(a)
    assert a.types() == ["connected", "waiting"]
    assert a.frames[0]["clientId"] == a_id
    assert hub.waiting_id == a_id

    b_id = hub.connect(b)
    assert a.types() == ["connected", "waiting", "matched"]
    assert b.types() == ["connected", "matched"]
    assert hub.waiting_id is None
    assert hub.registry.lookup(a_id).partner_id == b_id
    assert hub.registry.lookup(b_id).state is ConnectionState.MATCHED
    _assert_symmetric(hub)


def test_third_client_waits_without_disturbing_pair(hub, pair, make_link):
    (a_id, a), (b_id, b) = pair
    c = make_link()
    c_id = hub.connect(c)
    assert c.types() == ["connected", "waiting"]
    assert hub.waiting_id == c_id
    assert a.frames == [] and b.frames == []
    assert hub.registry.lookup(a_id).partner_id == b_id


def test_sole_waiter_requeue_never_self_pairs(hub, make_link):
    a = make_link()
    a_id = hub.connect(a)
    a.clear()

    hub.receive(a_id, '{"type":"queue"}')

    client = hub.registry.lookup(a_id)
    assert client.partner_id is None
    assert hub.waiting_id == a_id
    assert a.types() == ["waiting"]


def test_requeue_of_waiting_client_is_idempotent(hub, make_link):
    a = make_link()
    a_id = hub.connect(a)
    for _ in range(3):
        a.clear()
        hub.receive(a_id, '{"type":"queue"}')
        assert a.types() == ["waiting"]
    assert hub.waiting_id == a_id
    assert hub.snapshot().clients == 1


def test_requeue_while_paired_tears_down_first(hub, pair):
    (a_id, a), (b_id, b) = pair

    hub.receive(a_id, '{"type":"queue"}')

    assert b.types() == ["partner-left"]
    assert a.types() == ["waiting"]
    assert hub.registry.lookup(b_id).partner_id is None
    assert hub.registry.lookup(b_id).state is ConnectionState.IDLE
    assert hub.waiting_id == a_id

    # abandoned partner asks for a new chat and lands with the requeued client
    hub.receive(b_id, '{"type":"queue"}')
    assert hub.registry.lookup(a_id).partner_id == b_id
    assert a.types() == ["waiting", "matched"]
    _assert_symmetric(hub)


def test_stale_waiting_slot_is_skipped(hub, make_link):
    a, b = make_link(), make_link()
    a_id = hub.connect(a)
    # occupant vanishes without the slot being cleared
    hub.registry.remove(a_id)
    assert hub.waiting_id == a_id

    b_id = hub.connect(b)
    assert b.types() == ["connected", "waiting"]
    assert hub.waiting_id == b_id
    assert hub.registry.lookup(b_id).partner_id is None


def test_waiting_slot_never_holds_paired_client(hub, make_link):
    links = [make_link() for _ in range(7)]
    ids = [hub.connect(link) for link in links]
    for client_id in ids[::2]:
        hub.receive(client_id, '{"type":"queue"}')
        waiting = hub.waiting_id
        if waiting is not None:
            assert hub.registry.lookup(waiting).partner_id is None
        _assert_symmetric(hub)
    stats = hub.snapshot()
    assert stats.clients == 7
    assert stats.pairs * 2 + int(stats.waiting) <= 7
