"""Two-helper hierarchical histogram simulation.

This script simulates client records, splits them into the two helpers'
partial reports, runs both helpers' level orchestrators until the query
completes, and evaluates the reconstructed histogram against the truth
using MSE and L1 distance metrics.
"""

from __future__ import annotations

import logging
import sys
import tempfile
from dataclasses import replace
from pathlib import Path

import numpy as np

from dpf_histograms.config import Config, HelperConfig
from dpf_histograms.dpf import Parameters
from dpf_histograms.query import (
    ExpansionPlan,
    PartialResult,
    QueryStep,
    combine_partial_results,
    partial_result_uri,
    read_helper_shared_info,
)
from dpf_histograms.service import HelperService, InMemoryChannel, LocalFileStore, serve_shared_info
from dpf_histograms.utils import (
    calculate_l1_dist,
    calculate_mse,
    compute_true_histogram,
    generate_partial_reports,
    generate_simulated_records,
    histogram_vector,
    setup_logging,
)

logger = logging.getLogger(__name__)

QUERY_ID = "simulation"
BIT_LENGTH = 8
PLAN = ExpansionPlan(
    prefix_lengths=(2, 4, 8),
    privacy_budget_per_prefix=(0.2, 0.3, 0.5),
    expansion_threshold_per_prefix=(20.0, 10.0, 0.0),
)
TOTAL_EPSILON = 3.0


def helper_config(base: Config, root: Path, origin: str) -> Config:
    helper = HelperConfig(
        origin=origin,
        shared_dir=str(root / origin / "shared"),
        work_dir=str(root / origin / "work"),
    )
    channel = replace(base.channel, poll_interval=0.05)
    return replace(base, helper=helper, channel=channel)


def run_simulation(base: Config, num_records: int = 2000, distribution: str = "clustered") -> dict[int, int]:
    """Run one query end to end and return the reconstructed final histogram."""
    root = Path(tempfile.mkdtemp(prefix="dpf_histograms_"))
    store = LocalFileStore()

    records = generate_simulated_records(num_records, BIT_LENGTH, distribution)
    parameters = Parameters.from_prefix_lengths(PLAN.prefix_lengths)
    report_0, report_1 = generate_partial_reports(records, parameters)

    plan_uri = str(root / "plan.yaml")
    params_uri = str(root / "sum_params.bin")
    store.write_bytes(plan_uri, PLAN.to_yaml().encode())
    store.write_bytes(params_uri, parameters.to_bytes())

    configs = [helper_config(base, root, f"helper{i}") for i in range(2)]
    reports = [report_0, report_1]
    services = [HelperService(cfg, store=store, channel=InMemoryChannel()) for cfg in configs]

    # Each helper learns its partner's identity from the partner's endpoint.
    servers = [serve_shared_info(s.shared_info) for s in services]
    try:
        urls = [f"http://{srv.server_address[0]}:{srv.server_address[1]}/shared_info" for srv in servers]
        partner_info = [read_helper_shared_info(urls[1 - i]) for i in range(2)]
    finally:
        for srv in servers:
            srv.shutdown()
            srv.server_close()

    for i, service in enumerate(services):
        report_uri = str(root / f"helper{i}" / "partial_report.bin")
        store.write_bytes(report_uri, reports[i])
        step = QueryStep(
            query_id=QUERY_ID,
            level=0,
            partner_shared_info=partner_info[i],
            expand_config_uri=plan_uri,
            total_epsilon=TOTAL_EPSILON,
            result_dir=str(root / f"helper{i}" / "results"),
            partial_report_uri=report_uri,
            sum_params_uri=params_uri,
        )
        service.channel.publish(step.to_json(), message_id=step.message_id)

    # Alternate one delivery per helper so each level's dependency is met.
    with services[0], services[1]:
        while sum(s.run(max_messages=1, stop_when_idle=True) for s in services):
            pass

    final = PLAN.final_level
    results = [
        PartialResult.from_bytes(store.read_bytes(partial_result_uri(str(root / f"helper{i}" / "results"), QUERY_ID, final)))
        for i in range(2)
    ]
    estimate = combine_partial_results(*results)

    truth = compute_true_histogram(records, BIT_LENGTH, PLAN.prefix_lengths[final])
    prefixes = sorted(estimate)
    true_vec = histogram_vector(truth, prefixes)
    est_vec = histogram_vector(estimate, prefixes)
    logger.info("evaluated %d prefixes at the final level", len(prefixes))
    logger.info("MSE on reported prefixes (counts): %.4f", calculate_mse(true_vec, est_vec))
    logger.info("L1 dist on reported prefixes (counts): %.4f", calculate_l1_dist(true_vec, est_vec))
    missed = sum(c for p, c in truth.items() if p not in estimate)
    logger.info("records under pruned prefixes: %d of %d", missed, len(records))
    return estimate


# --- Main Simulation Example ---
if __name__ == "__main__":
    config_path = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("config.yaml")
    sim_config = Config.from_yaml(config_path) if config_path.exists() else Config()
    setup_logging(sim_config.effective_log_level)

    histogram = run_simulation(sim_config)
    top = sorted(histogram.items(), key=lambda kv: kv[1], reverse=True)[:10]
    print("\n--- Results ---")
    print(f"Top prefixes: {np.array(top)}")
