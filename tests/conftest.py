"""Shared pytest fixtures and utilities for pizzeria ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from pizzeria_ledger import cli, constants, core_logic, data_manager, expansion  # noqa: E402
from pizzeria_ledger.catalog import DEFAULT_CATALOG  # noqa: E402
from pizzeria_ledger.ledger_store import LedgerStore  # noqa: E402
from pizzeria_ledger.setup_excel import create_master_workbook, seed_state  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "BusinessName = {business_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Ledger]\n"
    "TaxRate = {tax_rate}\n"
    "LowStockThreshold = 10\n"
    "ExpirySoonDays = 7\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    business_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates a seeded ledger workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "ledger.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        business_name: str = "Test Pizzeria",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        tax_rate: str = "0.12",
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                business_name=business_name,
                schema_version=schema_version,
                tax_rate=tax_rate,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            business_name=business_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> Iterator[core_logic.RuntimeContext]:
    """Load a workbook-backed runtime context through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    try:
        yield context
    finally:
        core_logic.close_context(context)


# ---------------------------------------------------------------------------
# In-memory store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "ledger.xlsx",
        business_name="Test Pizzeria",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        tax_rate=Decimal("0.12"),
    )


@pytest.fixture
def store() -> LedgerStore:
    """Return an in-memory store seeded with the default catalog."""

    return LedgerStore(seed_state(DEFAULT_CATALOG))


@pytest.fixture
def context(settings: data_manager.ConfigSettings, store: LedgerStore) -> Iterator[core_logic.RuntimeContext]:
    """Assemble a runtime context around the in-memory store."""

    context = core_logic.build_context(settings, store)
    try:
        yield context
    finally:
        core_logic.close_context(context)


@pytest.fixture
def menu_item_id(context: core_logic.RuntimeContext) -> Callable[[str], str]:
    """Look up a seeded menu item id by name."""

    def _lookup(name: str) -> str:
        for item in core_logic.list_menu_items(context):
            if item.name == name:
                return item.menu_item_id
        raise LookupError(name)

    return _lookup


@pytest.fixture
def customization_id(context: core_logic.RuntimeContext) -> Callable[[str], str]:
    """Look up a seeded customization id by name."""

    def _lookup(name: str) -> str:
        for item in core_logic.list_customizations(context):
            if item.name == name:
                return item.customization_id
        raise LookupError(name)

    return _lookup


@pytest.fixture
def sale_factory(
    context: core_logic.RuntimeContext,
    menu_item_id: Callable[[str], str],
) -> Callable[..., list]:
    """Record a sale of a seeded menu item and return its entries."""

    def _record(
        name: str = "Pepperoni Pizza",
        *,
        quantity: int = 1,
        on: date = date(2024, 5, 1),
        includes_tax: bool = True,
    ) -> list:
        command = expansion.SaleCommand(
            menu_item_id=menu_item_id(name),
            quantity=quantity,
            date=on,
            includes_tax=includes_tax,
        )
        return expansion.record_sale(context, command)

    return _record


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="pizzeria-cli", description="Pizzeria CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_table_entry() -> tuple[str, cli.CommandSpec]:
    """Provide a placeholder command table entry for dispatch tests."""

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        execute.__dict__["called"] = True
        return 0

    def register(
        subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    ) -> argparse.ArgumentParser:
        return subparsers.add_parser("catalog-test")

    spec = cli.CommandSpec(
        name="catalog-test",
        help_text="help",
        register=register,
        execute=execute,
    )
    return "catalog-test", spec


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
