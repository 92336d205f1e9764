import importlib
import logging
import pkgutil

from migrakit.errors import RegistryError
from migrakit.services.unit import MigrationUnit

logger = logging.getLogger(__name__)


def load_units(package="migrakit.units"):
    """
    Import every module in `package` and collect its module-level `unit`.
    Returns units sorted by identifier; duplicate identifiers are rejected.
    """
    pkg = importlib.import_module(package)
    units = {}
    for m in pkgutil.iter_modules(pkg.__path__):
        if m.name.startswith("_"):
            continue
        module = importlib.import_module(f"{package}.{m.name}")
        unit = getattr(module, "unit", None)
        if unit is None:
            logger.warning("Module %s.%s defines no `unit`; skipped", package, m.name)
            continue
        if not isinstance(unit, MigrationUnit):
            raise RegistryError(f"{package}.{m.name}.unit is not a MigrationUnit")
        if unit.identifier in units:
            raise RegistryError(
                f"Duplicate unit identifier {unit.identifier}: "
                f"{units[unit.identifier].display_name} and {unit.display_name}"
            )
        units[unit.identifier] = unit
    ordered = sorted(units.values(), key=lambda u: u.sort_key)
    logger.info("Loaded %d migration unit(s) from %s", len(ordered), package)
    return ordered
