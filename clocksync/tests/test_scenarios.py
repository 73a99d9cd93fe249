import asyncio
import json
import random

import pytest

from clocksync.clock import happened_before
from clocksync.decision import Action, ActionWeights, random_decider, scripted_decider, scripted_peers
from clocksync.detector import CausalityChecker
from clocksync.orchestrator import Simulation, SimulationConfig, build_mesh, run_simulation


def _config(**kw):
    kw.setdefault("event_delay", 0)
    return SimulationConfig(**kw)


def test_lamport_two_node_delivery():
    cfg = _config(num_nodes=2, iterations=1, clock="lamport")
    result = run_simulation(cfg, decide=scripted_decider({0: [Action.SEND]}))
    assert result.ok
    send = [e for e in result.events if e.kind == "send"][0]
    recv = [e for e in result.events if e.kind == "recv"][0]
    assert (send.node, send.peer, send.clock) == (0, 1, 1)
    # node 1 had not advanced before the merge, so its clock went 0 -> max(0, 1) + 1
    before = [e for e in result.events if e.node == 1 and e.seq < recv.seq and e.kind != "idle"]
    assert before == []
    assert (recv.node, recv.sent_clock, recv.clock) == (1, 1, 2)
    assert result.clocks == {0: 1, 1: 2}


def test_vector_three_node_delivery():
    cfg = _config(num_nodes=3, iterations=1, clock="vector")
    result = run_simulation(
        cfg,
        decide=scripted_decider({0: [Action.SEND]}),
        choose_peer=scripted_peers({0: [1]}),
    )
    assert result.ok
    send = [e for e in result.events if e.kind == "send"][0]
    recv = [e for e in result.events if e.kind == "recv"][0]
    assert send.clock == (1, 0, 0)
    assert recv.clock == (1, 1, 0)
    assert result.clocks == {0: (1, 0, 0), 1: (1, 1, 0), 2: (0, 0, 0)}


def test_vector_local_event_then_send():
    cfg = _config(num_nodes=3, iterations=2, clock="vector")
    result = run_simulation(
        cfg,
        decide=scripted_decider({0: [Action.LOCAL, Action.SEND]}),
        choose_peer=scripted_peers({0: [1]}),
    )
    local = [e for e in result.events if e.kind == "local"][0]
    assert local.clock == (1, 0, 0)
    assert result.clocks[1] == (2, 1, 0)


@pytest.mark.parametrize("kind", ["lamport", "vector"])
def test_runs_without_sends_stay_local(kind):
    cfg = _config(num_nodes=4, iterations=12, clock=kind)
    decide = random_decider(ActionWeights(local=1, send=0, idle=1), random.Random(7))
    result = run_simulation(cfg, decide=decide)
    assert result.ok
    assert not [e for e in result.events if e.kind in ("send", "recv", "drop")]
    for node in range(4):
        locals_drawn = len([e for e in result.events if e.node == node and e.kind == "local"])
        clock = result.clocks[node]
        if kind == "vector":
            assert clock[node] == locals_drawn
            assert all(v == 0 for i, v in enumerate(clock) if i != node)
        else:
            assert clock == locals_drawn


def test_messages_on_one_edge_arrive_in_send_order():
    cfg = _config(num_nodes=3, iterations=8, capacity=2, clock="lamport")
    result = run_simulation(
        cfg,
        decide=scripted_decider({0: [Action.SEND] * 8}),
        choose_peer=scripted_peers({0: [1] * 8}),
    )
    got = [e.payload for e in result.events if e.kind == "recv" and e.node == 1]
    assert got == [str(i) for i in range(8)]
    assert CausalityChecker().check(result.events) == []


def test_causal_chain_across_three_nodes():
    cfg = _config(num_nodes=3, iterations=5, clock="vector", event_delay=0.01)
    script = {0: [Action.SEND], 1: [Action.IDLE] * 3 + [Action.SEND]}
    result = run_simulation(
        cfg,
        decide=scripted_decider(script),
        choose_peer=scripted_peers({0: [1], 1: [2]}),
    )
    first = [e for e in result.events if e.kind == "send" and e.node == 0][0]
    relay = [e for e in result.events if e.kind == "send" and e.node == 1][0]
    last = [e for e in result.events if e.kind == "recv" and e.node == 2][0]
    assert happened_before(first.clock, relay.clock)
    assert happened_before(relay.clock, last.clock)
    assert happened_before(first.clock, last.clock)
    assert relay.clock == (1, 2, 0)
    assert result.clocks[2] == (1, 2, 1)


@pytest.mark.parametrize("kind", ["lamport", "vector"])
@pytest.mark.parametrize("seed", [1, 2, 3])
def test_random_runs_deliver_everything_in_causal_order(kind, seed):
    cfg = _config(num_nodes=4, iterations=25, capacity=3, clock=kind, seed=seed)
    result = run_simulation(cfg)
    assert result.ok
    assert result.delivery_failures == 0
    sends = [e for e in result.events if e.kind == "send"]
    recvs = [e for e in result.events if e.kind == "recv"]
    assert len(sends) == len(recvs)
    assert CausalityChecker().check(result.events) == []


def test_task_failures_are_collected_not_fatal():
    def decide(node_id, iteration):
        if node_id == 1:
            raise RuntimeError("boom")
        return Action.SEND

    result = run_simulation(_config(num_nodes=3, iterations=3), decide=decide)
    assert not result.ok
    assert len(result.errors) == 1
    assert isinstance(result.errors[0], RuntimeError)
    assert len([e for e in result.events if e.kind == "send"]) == 6
    assert result.summary()["ok"] is False


def test_single_node_simulation_finishes():
    result = run_simulation(_config(num_nodes=1, iterations=4, clock="vector", seed=5))
    assert result.ok
    assert len(result.clocks) == 1


def test_trace_is_written_as_jsonl(tmp_path):
    cfg = _config(num_nodes=2, iterations=3, clock="vector", seed=11, log_dir=str(tmp_path))
    result = run_simulation(cfg)
    lines = (tmp_path / "trace.jsonl").read_text().splitlines()
    assert len(lines) == len(result.events)
    first = json.loads(lines[0])
    assert set(first) >= {"seq", "node", "kind", "clock"}
    assert isinstance(first["clock"], list)


def test_listeners_receive_every_event():
    seen = []
    sim = Simulation(_config(num_nodes=2, iterations=4, seed=3))
    sim.register_listener(seen.append)
    result = asyncio.run(sim.run())
    assert len(seen) == len(result.events)


def test_unregistered_listener_hears_nothing():
    seen = []
    sim = Simulation(_config(num_nodes=2, iterations=4, seed=3))
    sim.register_listener(seen.append)
    sim.unregister_listener(seen.append)
    result = asyncio.run(sim.run())
    assert result.events
    assert seen == []


def test_build_mesh_gives_each_node_every_other_peer():
    receivers, adjacency = build_mesh(4, 5)
    assert len(receivers) == 4
    for node, peers in adjacency.items():
        assert sorted(peers) == [p for p in range(4) if p != node]
    handles = [id(s) for peers in adjacency.values() for s in peers.values()]
    assert len(set(handles)) == 12


def test_config_validation():
    with pytest.raises(ValueError):
        SimulationConfig(num_nodes=0)
    with pytest.raises(ValueError):
        SimulationConfig(capacity=0)
    with pytest.raises(ValueError):
        SimulationConfig(clock="hybrid")
    with pytest.raises(ValueError):
        SimulationConfig(iterations=-1)
    with pytest.raises(ValueError):
        ActionWeights(0, 0, 0)
    with pytest.raises(ValueError):
        ActionWeights(-1, 1, 1)


@pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_weights_are_rejected(bad):
    with pytest.raises(ValueError):
        ActionWeights(bad, 1, 1)
    with pytest.raises(ValueError):
        ActionWeights(1, 1, bad)


def test_non_finite_weights_from_env_are_rejected():
    with pytest.raises(ValueError):
        SimulationConfig.from_env(environ={"CLOCKSYNC_WEIGHTS": "nan,1,1"})
    with pytest.raises(ValueError):
        SimulationConfig.from_env(environ={"CLOCKSYNC_WEIGHTS": "1,inf,1"})


def test_config_defaults():
    cfg = SimulationConfig()
    assert (cfg.num_nodes, cfg.iterations, cfg.capacity) == (3, 10, 10)
    assert cfg.weights.as_list() == [1, 1, 2]


def test_config_from_env():
    env = {
        "CLOCKSYNC_NUM_NODES": "5",
        "CLOCKSYNC_CLOCK": "vector",
        "CLOCKSYNC_EVENT_DELAY": "0",
        "CLOCKSYNC_WEIGHTS": "1,0,3",
        "CLOCKSYNC_SEED": "",
    }
    cfg = SimulationConfig.from_env(environ=env, iterations=2)
    assert cfg.num_nodes == 5
    assert cfg.clock == "vector"
    assert cfg.event_delay == 0.0
    assert cfg.iterations == 2
    assert cfg.seed is None
    assert cfg.weights == ActionWeights(1, 0, 3)
