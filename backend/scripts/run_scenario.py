"""
Deterministic scenario runner for demo / exam:
- runs a seeded simulation (vector clocks by default) with 3 nodes
- writes the JSONL trace and checks it for causality anomalies
- draws the space-time diagram and saves a run summary
"""

import argparse
import json
import os

from clocksync.detector import CausalityChecker
from clocksync.logger import setup_logger
from clocksync.orchestrator import SimulationConfig, run_simulation
from clocksync.visualizer import plot_space_time

LOG_DIR = os.path.join(os.path.dirname(__file__), "..", "logs")


def run_demo(clock="vector", num_nodes=3, iterations=10, seed=42, event_delay=0.1, log_dir=LOG_DIR):
    setup_logger(log_dir=log_dir)
    config = SimulationConfig(
        num_nodes=num_nodes,
        iterations=iterations,
        clock=clock,
        seed=seed,
        event_delay=event_delay,
        log_dir=log_dir,
    )
    print("Running", clock, "demo with", num_nodes, "nodes")
    result = run_simulation(config)

    trace_path = os.path.join(log_dir, "trace.jsonl")
    anomaly_path = os.path.join(log_dir, "anomalies.jsonl")
    # start each demo with a clean anomaly log
    if os.path.exists(anomaly_path):
        os.remove(anomaly_path)
    anomalies = CausalityChecker(log_path=anomaly_path).check_file(trace_path)
    plot = plot_space_time(trace_path, os.path.join(log_dir, "space_time.png"))

    summary = dict(result.summary(), anomalies=len(anomalies), trace=trace_path, plot=plot)
    with open(os.path.join(log_dir, "run_summary.json"), "w", encoding="utf-8") as f:
        json.dump(summary, f, indent=2)
    print("Demo complete. Summary:", summary)
    return summary


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run a seeded logical clock simulation")
    parser.add_argument("--clock", default="vector", choices=["lamport", "vector"])
    parser.add_argument("--nodes", type=int, default=3)
    parser.add_argument("--iterations", type=int, default=10)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--delay", type=float, default=0.1)
    args = parser.parse_args()
    run_demo(args.clock, args.nodes, args.iterations, args.seed, args.delay)
