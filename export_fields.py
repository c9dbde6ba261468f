# export_fields.py
#
# Writes a synthetic velocity field for every catalog filter in the layout
# FieldProvider reads: {OUTDIR}/{filter}/velocity.json(.gz)

import os

from filterflow.config import FILTER_CATALOG, load_catalog
from filterflow.field_provider import synthetic_field, write_field
from filterflow.logging_config import setup_logging

OUTDIR = os.environ.get("FIELD_OUTDIR", "cfd_data")
GRID_WIDTH = int(os.environ.get("GRID_WIDTH", 200))
GRID_HEIGHT = int(os.environ.get("GRID_HEIGHT", 100))
COMPRESS = os.environ.get("COMPRESS", "1") == "1"


def main():
    logger = setup_logging()
    catalog_path = os.environ.get("FILTER_CATALOG")
    catalog = load_catalog(catalog_path) if catalog_path else FILTER_CATALOG

    name = "velocity.json.gz" if COMPRESS else "velocity.json"
    for key, params in catalog.items():
        field = synthetic_field(key, params.pressure_drop_fraction,
                                grid_width=GRID_WIDTH, grid_height=GRID_HEIGHT)
        path = write_field(field, os.path.join(OUTDIR, key, name))
        logger.info(f"{key}: pressure drop {params.pressure_drop_fraction:.4f}")
        print("Saved:", path)


if __name__ == "__main__":
    main()
