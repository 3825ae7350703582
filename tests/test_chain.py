# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.

import httpx

import ledgernet.chain
from ledgernet.chain import ChainObservation, ChainReader

LFB_HASH = "a1" * 32


def status_body(era=3, height=42, block_hash=LFB_HASH, key="last_added_block_info"):
    return {
        "api_version": "1.0.0",
        "chainspec_name": "net-1",
        key: {
            "hash": block_hash,
            "timestamp": "2021-01-02T03:04:35.000Z",
            "era_id": era,
            "height": height,
        },
    }


def test_parse_status():
    obs = ledgernet.chain.parse_status(2, status_body())
    assert obs == ChainObservation(2, 3, LFB_HASH, 42)
    assert obs.is_available()


def test_parse_status_older_nodes():
    obs = ledgernet.chain.parse_status(1, status_body(key="last_finalized_block"))
    assert obs.era == 3


def test_parse_status_before_first_block():
    obs = ledgernet.chain.parse_status(1, {"last_added_block_info": None})
    assert obs == ChainObservation(1)
    assert not obs.is_available()


def test_observe(network, monkeypatch):
    urls = []

    def get(url, timeout):
        urls.append(url)
        return httpx.Response(
            200, json=status_body(era=5), request=httpx.Request("GET", url)
        )

    monkeypatch.setattr(httpx, "get", get)
    obs = ChainReader(network).observe(2)
    assert obs.era == 5
    assert urls == [f"http://127.0.0.1:{network.node(2).port_rest}/status"]


def test_observe_unreachable_node(network, monkeypatch):
    def get(url, timeout):
        raise httpx.ConnectError("Connection refused")

    monkeypatch.setattr(httpx, "get", get)
    assert ChainReader(network).observe(1) == ChainObservation(1)


def test_observe_error_status(network, monkeypatch):
    monkeypatch.setattr(
        httpx,
        "get",
        lambda url, timeout: httpx.Response(503, request=httpx.Request("GET", url)),
    )
    assert not ChainReader(network).observe(1).is_available()
