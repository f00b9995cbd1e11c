"""Module registry with type and capability indices."""

import re
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger

from errors import ModuleNotFoundInRegistry, RegistrationError
from protocol import Record

from .base import DEFAULT_PRIORITIES, REQUIRED_METHODS, ModuleType

_IDENTIFIER_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


class ModuleRegistry:
    """Stores modules keyed by identifier.

    Indices by type, capability and ``{type}/{name}`` path are built as each
    module is registered and never recomputed per query. After ``freeze()`` the
    table is read-only and safe to share across worker threads.
    """

    def __init__(self):
        self._modules: Dict[str, object] = {}
        self._metadata: Dict[str, Record] = {}
        self._order: List[str] = []
        self._by_type: Dict[ModuleType, List[str]] = {t: [] for t in ModuleType}
        self._by_capability: Dict[str, List[str]] = {}
        self._by_path: Dict[str, str] = {}
        self._frozen = False
        self._lock = threading.Lock()

    @classmethod
    def with_builtins(cls, extra: Iterable[object] = (), freeze: bool = True) -> "ModuleRegistry":
        from .modules import BUILTIN_MODULES

        registry = cls()
        for module_cls in BUILTIN_MODULES:
            registry.register(module_cls())
        for module in extra:
            registry.try_register(module)
        if freeze:
            registry.freeze()
        return registry

    def register(self, module) -> object:
        """Validate and add ``module``; raises ``RegistrationError`` on rejection."""
        identifier = getattr(module, "identifier", "") or ""
        if not identifier:
            raise RegistrationError("Module identifier cannot be empty", error_code="EMPTY_IDENTIFIER")
        if not _IDENTIFIER_PATTERN.match(identifier):
            raise RegistrationError(
                f"Module identifier '{identifier}' must be lowercase and hyphenated",
                error_code="INVALID_IDENTIFIER",
            )

        for method in REQUIRED_METHODS:
            if not callable(getattr(module, method, None)):
                raise RegistrationError(
                    f"Module '{identifier}' is missing required method '{method}'",
                    error_code="MISSING_METHOD",
                )

        try:
            module_type = ModuleType(getattr(module, "module_type", None))
        except ValueError:
            raise RegistrationError(
                f"Module '{identifier}' has unknown type {getattr(module, 'module_type', None)!r}",
                error_code="INVALID_TYPE",
            )

        metadata = module.get_metadata()
        if not isinstance(metadata, Record) or not metadata.get("language"):
            raise RegistrationError(
                f"Module '{identifier}' metadata must declare a language",
                error_code="INVALID_METADATA",
            )

        name = getattr(module, "name", "") or identifier
        path = f"{module_type.value}/{name}"

        with self._lock:
            if self._frozen:
                raise RegistrationError(
                    f"Cannot register '{identifier}': registry is frozen", error_code="FROZEN"
                )
            if identifier in self._modules:
                raise RegistrationError(
                    f"Module with identifier '{identifier}' is already registered",
                    error_code="DUPLICATE_IDENTIFIER",
                )
            if path in self._by_path:
                raise RegistrationError(
                    f"Module path '{path}' is already provided by '{self._by_path[path]}'",
                    error_code="DUPLICATE_PATH",
                )

            self._modules[identifier] = module
            self._metadata[identifier] = metadata
            self._order.append(identifier)
            self._by_type[module_type].append(identifier)
            self._by_path[path] = identifier
            for capability in metadata.get_array("capabilities"):
                self._by_capability.setdefault(capability, []).append(identifier)

        logger.debug(f"Registered module {identifier} ({path})")
        return module

    def try_register(self, module) -> bool:
        """Register ``module``, logging instead of raising on rejection."""
        try:
            self.register(module)
            return True
        except RegistrationError as e:
            logger.error(f"Module registration rejected: {e.message}")
            return False

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # Lookup

    def get(self, identifier: str):
        try:
            return self._modules[identifier]
        except KeyError:
            raise ModuleNotFoundInRegistry(f"No module registered as '{identifier}'")

    def find(self, identifier: str):
        return self._modules.get(identifier)

    def load(self, path: str):
        """Resolve a module by ``{type}/{name}``."""
        identifier = self._by_path.get(path.strip("/"))
        if identifier is None:
            raise ModuleNotFoundInRegistry(
                f"No module found at '{path}'",
                suggestions=[f"Known modules: {', '.join(sorted(self._by_path))}"],
            )
        return self._modules[identifier]

    def metadata(self, identifier: str) -> Record:
        self.get(identifier)
        return self._metadata[identifier]

    def modules(self) -> List[object]:
        return [self._modules[i] for i in self._order]

    def by_type(self, module_type) -> List[object]:
        return [self._modules[i] for i in self._by_type[ModuleType(module_type)]]

    def by_capability(self, capability: str) -> List[object]:
        return [self._modules[i] for i in self._by_capability.get(capability, [])]

    def capabilities(self) -> List[str]:
        return sorted(self._by_capability)

    def registration_index(self, identifier: str) -> int:
        return self._order.index(identifier)

    def priority_of(self, module) -> int:
        priority = getattr(module, "priority", None)
        if priority is not None:
            return int(priority)
        return DEFAULT_PRIORITIES[ModuleType(module.module_type)]

    def resolve_owner(self, candidates: List[object]) -> Tuple[object, Optional[str]]:
        """Pick the module that owns a platform claimed by several modules.

        Highest priority wins (project > framework > language). A tie at the
        top priority yields a warning and the earliest registration wins.
        """
        if not candidates:
            raise ValueError("resolve_owner needs at least one candidate")
        ranked = sorted(
            candidates,
            key=lambda m: (-self.priority_of(m), self.registration_index(m.identifier)),
        )
        winner = ranked[0]
        tied = [m for m in ranked[1:] if self.priority_of(m) == self.priority_of(winner)]
        warning = None
        if tied:
            names = ", ".join(m.identifier for m in tied)
            warning = (
                f"Modules {winner.identifier}, {names} share priority "
                f"{self.priority_of(winner)}; using {winner.identifier}"
            )
        return winner, warning

    def __len__(self) -> int:
        return len(self._modules)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._modules
