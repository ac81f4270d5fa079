"""Utility for initializing the pizzeria ledger workbook.

The module doubles as a script (``pizzeria-setup``) and as a library used by
tests or other tooling. The workbook gets one sheet per collection and the
menu and customization sheets are seeded from the configured catalog.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Sequence

from . import data_manager
from .catalog import DEFAULT_CATALOG, Catalog, load_catalog
from .constants import Collection
from .ledger_store import ID_PREFIXES, LedgerStore

CONFIG_FILE = "config.ini"


def seed_state(catalog: Catalog) -> dict[str, dict[str, dict]]:
    """Return store state holding only the catalog, under fresh ids."""

    menu_prefix = ID_PREFIXES[Collection.MENU_ITEMS.value]
    customization_prefix = ID_PREFIXES[Collection.CUSTOMIZATIONS.value]
    return {
        Collection.MENU_ITEMS.value: {
            LedgerStore.generate_key(menu_prefix): document for document in catalog.menu_item_documents()
        },
        Collection.CUSTOMIZATIONS.value: {
            LedgerStore.generate_key(customization_prefix): document
            for document in catalog.customization_documents()
        },
    }


def create_master_workbook(
    destination: Path,
    *,
    catalog: Catalog = DEFAULT_CATALOG,
    overwrite: bool = False,
) -> Path:
    """Create the ledger workbook at ``destination``.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing ledger workbook: {destination}")

    workbook = data_manager.create_blank_workbook()
    data_manager.write_collections(workbook, seed_state(catalog))
    data_manager.save_workbook(workbook, destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``config.ini`` using its catalog."""

    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.expanduser().resolve().parent)
    return create_master_workbook(
        settings.data_file,
        catalog=load_catalog(settings.catalog_file),
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the pizzeria ledger workbook")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Pizzeria Ledger Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created ledger workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
