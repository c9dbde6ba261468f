# run_multipass.py

import datetime as dt
import json
import os
from pathlib import Path

from filterflow.config import SimulationConfig, load_catalog
from filterflow.field_provider import FieldProvider
from filterflow.logging_config import setup_logging
from filterflow.session import run_comparison
from filterflow.utils_time import format_simulated_minutes

# ================= CONFIG =================
OUTPUT_FOLDER = "multipass_output"

DEFAULT_FILTERS = ["MERV13", "HEPA"]
DEFAULT_FRAME_SECONDS = 1.0 / 30
DEFAULT_CHECKPOINTS = [0.1, 0.25, 0.5, 0.75, 1.0]
# ========================================


def run_multipass(filters, base_url=None, data_dir=None, catalog_path=None,
                  frame_seconds=DEFAULT_FRAME_SECONDS, seed=None):
    """
    Headless multi-pass comparison; writes a JSON summary and returns its path.
    """
    logger = setup_logging()

    kwargs = {}
    if catalog_path:
        kwargs["catalog"] = load_catalog(catalog_path)
    provider = FieldProvider(base_url=base_url, data_dir=data_dir, **kwargs)

    cfg = SimulationConfig()
    logger.info(f"Running comparison for {', '.join(filters)}")
    try:
        results = run_comparison(filters, cfg, frame_seconds=frame_seconds,
                                 checkpoints=DEFAULT_CHECKPOINTS, provider=provider, seed=seed)
    finally:
        provider.close()

    for key, r in results.items():
        done = r["completionMinutes"]
        logger.info(f"{key}: {r['passCount']} passes, complete after "
                    f"{format_simulated_minutes(done) if done is not None else 'n/a'}")

    Path(OUTPUT_FOLDER).mkdir(exist_ok=True)
    timestamp = dt.datetime.now().strftime("%Y%m%d_%H%M%S")
    out_path = Path(OUTPUT_FOLDER) / f"multipass_{timestamp}.json"
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump({"filters": filters, "results": results}, f, indent=2)

    print("Saved:", out_path)
    return out_path


# ========== CLI Runner ==========
if __name__ == "__main__":
    filters = [k.strip() for k in os.environ.get("FILTERS", ",".join(DEFAULT_FILTERS)).split(",") if k.strip()]
    seed = os.environ.get("SEED")

    run_multipass(
        filters,
        base_url=os.environ.get("FIELD_BASE_URL"),
        data_dir=os.environ.get("FIELD_DATA_DIR"),
        catalog_path=os.environ.get("FILTER_CATALOG"),
        frame_seconds=float(os.environ.get("FRAME_SECONDS", DEFAULT_FRAME_SECONDS)),
        seed=int(seed) if seed else None,
    )
