import json

import pytest

from banip_sync.exceptions import ExternalCommandFailure
from pbh_helper.proxy.handlers import BanHandlers

PEERS_RESPONSE = {
    "rid": 7,
    "full_update": True,
    "peers": {
        "192.0.2.1:6881": {"client": "qBittorrent/4.6.0"},
        "[2001:db8:1:2::77]:51413": {"client": "Transmission 4.0"},
        "198.51.100.9:6881": {"client": "Deluge"},
    },
}


def test_ban_peers_appends_extracted_addresses(engine):
    handlers = BanHandlers(engine)

    result = handlers.ban_peers({"peers": ["192.0.2.1:6881|[2001:db8:1:2::5]:51413|bad:port"]})

    assert result is not None and result.status == 204
    assert engine.check("192.0.2.1")
    assert engine.check("2001:db8:1:2::ffff")


def test_ban_peers_requires_field(engine):
    result = BanHandlers(engine).ban_peers({})

    assert result is not None and result.status == 400


def test_ban_peers_passes_through_when_disabled():
    assert BanHandlers(None).ban_peers({"peers": ["192.0.2.1:6881"]}) is None


def test_ban_peers_propagates_command_failure(engine, executor):
    executor.fail_on = "add element"

    with pytest.raises(ExternalCommandFailure):
        BanHandlers(engine).ban_peers({"peers": ["192.0.2.1:6881"]})


def test_set_preferences_replaces_ban_list(engine):
    engine.append(["203.0.113.5"]).result(timeout=5)
    handlers = BanHandlers(engine)

    payload = json.dumps({"banned_IPs": "192.0.2.1\n2001:db8:1:2::5\n"})
    result = handlers.set_preferences({"json": [payload]})

    assert result is not None and result.status == 204
    assert not engine.check("203.0.113.5")
    assert engine.check("192.0.2.1")
    assert engine.check("2001:db8:1:2::1")


def test_set_preferences_empty_list_flushes(engine, executor):
    engine.append(["203.0.113.5"]).result(timeout=5)
    executor.clear()

    result = BanHandlers(engine).set_preferences({"json": [json.dumps({"banned_IPs": ""})]})

    assert result is not None and result.status == 204
    assert [s.split(" ")[0] for s in executor.scripts] == ["flush", "flush"]
    assert not engine.check("203.0.113.5")


def test_set_preferences_rejects_unknown_keys(engine):
    payload = json.dumps({"banned_IPs": "192.0.2.1", "web_ui_password": "x"})

    result = BanHandlers(engine).set_preferences({"json": [payload]})

    assert result is not None and result.status == 403
    assert not engine.check("192.0.2.1")


def test_set_preferences_rejects_unknown_keys_even_when_disabled():
    result = BanHandlers(None).set_preferences({"json": [json.dumps({"save_path": "/"})]})

    assert result is not None and result.status == 403


def test_set_preferences_forwards_other_allowed_keys(engine):
    result = BanHandlers(engine).set_preferences({"json": [json.dumps({"up_limit": 1024})]})

    assert result is None


@pytest.mark.parametrize("form", [{}, {"json": ["{not json"]}, {"json": ["[1, 2]"]}])
def test_set_preferences_requires_json_object(engine, form):
    result = BanHandlers(engine).set_preferences(form)

    assert result is not None and result.status == 400


def test_torrent_peers_hides_banned_peers(engine):
    engine.append(["192.0.2.1", "2001:db8:1:2::1"]).result(timeout=5)
    handlers = BanHandlers(engine)

    body = handlers.sync_torrent_peers(200, json.dumps(PEERS_RESPONSE).encode())

    assert body is not None
    payload = json.loads(body)
    assert list(payload["peers"]) == ["198.51.100.9:6881"]
    assert payload["rid"] == 7


def test_torrent_peers_untouched_outside_window(engine):
    engine.append(["192.0.2.1"]).result(timeout=5)
    now = engine.last_add_time
    handlers = BanHandlers(engine, peer_filter_window=60.0, clock=lambda: now + 61.0)

    assert handlers.sync_torrent_peers(200, json.dumps(PEERS_RESPONSE).encode()) is None


def test_torrent_peers_untouched_before_any_ban(engine):
    handlers = BanHandlers(engine)

    assert handlers.sync_torrent_peers(200, json.dumps(PEERS_RESPONSE).encode()) is None


def test_torrent_peers_ignores_error_responses(engine):
    engine.append(["192.0.2.1"]).result(timeout=5)

    assert BanHandlers(engine).sync_torrent_peers(403, b"Forbidden") is None


def test_torrent_peers_without_peer_map(engine):
    engine.append(["192.0.2.1"]).result(timeout=5)

    assert BanHandlers(engine).sync_torrent_peers(200, b'{"rid": 8}') is None
